"""CLI phone-call simulator for the clinic voice receptionist.

Each line you type is treated as one recognised utterance, exactly as if
it had come from the telephony speech recogniser.  No audio is rendered.
For production, use the FastAPI server (voice_receptionist/server.py).

Usage:
    python -m voice_receptionist.main                    # normal mode (quiet)
    python -m voice_receptionist.main --debug            # debug mode (shows API calls)
    python -m voice_receptionist.main --caller +48600100200
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from voice_receptionist.agent import DialogueState, create_receptionist

logger = logging.getLogger(__name__)

DEFAULT_CALLER = "+48000000000"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("voice_receptionist").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive call loop."""
    parser = argparse.ArgumentParser(description="Clinic voice receptionist call simulator")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--caller", default=DEFAULT_CALLER,
        help="Caller phone number used as the session key",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Clinic Voice Receptionist - call simulator")
    print("=" * 60)
    print("  Speak by typing and pressing Enter (empty line = silence).")
    print("  Commands: 'quit' to hang up, 'new' to start a new call.")
    print("=" * 60 + "\n")

    controller = create_receptionist()
    caller = args.caller
    print(f"Receptionist: {controller.greet(caller).spoken_text}\n")

    while True:
        try:
            utterance = input("Caller: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nCall ended.")
            break

        if utterance.lower() in ("exit", "quit", "q"):
            print("\nCall ended.")
            break

        if utterance.lower() == "new":
            controller.reset(caller)
            print("\n>> New call started.\n")
            print(f"Receptionist: {controller.greet(caller).spoken_text}\n")
            continue

        try:
            result = controller.handle_turn(caller, utterance)
        except KeyboardInterrupt:
            print("\n\nCall ended.")
            break

        print(f"\nReceptionist: {result.spoken_text}")
        if result.action:
            logger.debug("action=%s path=%s", result.action, [str(s) for s in result.path])
        print()

        if not result.continue_listening or result.state is DialogueState.ENDED:
            print(">> The receptionist hung up (transferred to reception).")
            break


if __name__ == "__main__":
    main()
