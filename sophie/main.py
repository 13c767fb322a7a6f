"""Terminal chat with Sophie against the in-memory demo clinic.

Handy for trying a dialogue end to end without a messaging channel. For
production, run the FastAPI server (``sophie/server.py``).

Usage:
    python -m sophie.main                       # quiet
    python -m sophie.main --debug               # show engine and HTTP logs
    python -m sophie.main --phone +41791234567  # talk as a given patient
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from sophie.config import DEMO_CLINIC_ID
from sophie.dialogue.engine import build_engine

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG with --debug."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("sophie").setLevel(logging.DEBUG if debug else logging.INFO)


def _new_phone() -> str:
    return f"cli-{uuid.uuid4().hex[:8]}"


def main():
    """Run the interactive chat loop."""
    parser = argparse.ArgumentParser(description="Sophie dialogue engine CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages including HTTP requests")
    parser.add_argument("--clinic", default=DEMO_CLINIC_ID, help="Clinic id to seed and talk to")
    parser.add_argument("--phone", default=None, help="Patient identifier (defaults to a random one)")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Sophie - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new patient.")
    print("=" * 60 + "\n")

    engine = build_engine(args.clinic)
    phone = args.phone or _new_phone()
    conversation = engine.get_or_create_conversation(args.clinic, phone)
    logger.info("Talking as %s in conversation %s", phone, conversation.id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nAu revoir !")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nAu revoir !")
            break

        if user_input.lower() == "new":
            phone = _new_phone()
            conversation = engine.get_or_create_conversation(args.clinic, phone)
            print(f"\n>> New patient {phone}, conversation {conversation.id[:8]}...\n")
            continue

        try:
            reply = engine.process_message(conversation.id, user_input)
            print(f"\nSophie: {reply}\n")
        except KeyboardInterrupt:
            print("\n\nAu revoir !")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nSophie: Désolée, une erreur est survenue : {e}")
            print("        Réessayez ou tapez 'new' pour recommencer.\n")


if __name__ == "__main__":
    main()
