"""Sophie: a medical-clinic appointment assistant for messaging channels.

Architecture Overview
=====================

The core is a **Dialogue Engine** that turns free-text patient messages into
scheduling actions while keeping the language model on a short leash:

1. **Emergency filter**: a keyword pre-check that runs before any model call
   and short-circuits to a fixed safety message.

2. **ConversationManager**: an explicit finite-state orchestrator
   (IDLE → COLLECTING_PATIENT_DATA → COLLECTING_APPOINTMENT_DATA →
   CONFIRMATION → COMPLETED). The model only *extracts* entities; every
   transition, question and booking decision is deterministic Python.

3. **Validators**: ``EntityValidator`` sanitises what the model extracted
   (dates, times, emails, phones, birth dates, practitioner names) and
   ``ResponseValidator`` rejects generated replies that invent clinic facts
   (parking, floors, decoration...) before they reach a patient.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``. Extraction runs at temperature
  0.0 against a strict JSON contract validated with pydantic; free-form
  replies are only used as a last resort and always pass the hallucination
  guard.
- **Calendar**: a ``CalendarProvider`` protocol with a Google Calendar HTTP
  adapter (``httpx`` with exponential-backoff retries) and an in-memory
  adapter for development. Any calendar failure reads as "unavailable".
- **State**: conversation context is an immutable value (frozen dataclasses)
  persisted in the ``ConversationStore`` after every step.
- **Concurrency**: turns for the same conversation are serialised with a
  keyed lock; different conversations run in parallel.
- **Dual Interface**: FastAPI server (production) + CLI chat loop
  (development/testing).

Package Structure
-----------------
- ``sophie/config.py``: Centralized configuration from environment variables
- ``sophie/prompts.py``: Extraction and reply system prompts
- ``sophie/server.py``: FastAPI application
- ``sophie/main.py``: CLI chat interface
- ``sophie/dialogue/``: FSM engine, context merge, validators
- ``sophie/services/``: LLM, calendar, storage and metrics adapters
- ``sophie/utils/``: business hours, dates, language, emergency filter
- ``sophie/api/``: FastAPI routes and Pydantic schemas
"""
