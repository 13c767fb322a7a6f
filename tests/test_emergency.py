"""Tests for the emergency keyword filter."""

from __future__ import annotations

import pytest

from sophie.utils.emergency import is_emergency_message


class TestEmergencyDetection:
    @pytest.mark.parametrize(
        "message",
        [
            "C'est une urgence !",
            "J'ai une douleur intense à la poitrine",
            "Mon fils saigne beaucoup",
            "I have chest pain",
            "She can't breathe",
            "15",
            "112 !",
            "Appelez le 15 s'il vous plaît",
            "I need to call 911",
        ],
    )
    def test_detected(self, message):
        assert is_emergency_message(message) is True

    @pytest.mark.parametrize(
        "message",
        [
            "Je voudrais un rendez-vous le 15 mars à 15:00",
            "Un rendez-vous à 18h",
            "Bonjour",
            "I would like to book an appointment",
            "",
        ],
    )
    def test_not_detected(self, message):
        assert is_emergency_message(message) is False
