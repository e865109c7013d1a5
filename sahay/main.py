"""CLI entry point for the Sahay scheduling assistant.

A terminal chat loop for development; production traffic goes through
the FastAPI server (``sahay/server.py``).  The conversation history is
kept here, client-side, exactly as a web client would keep it.

Usage:
    python -m sahay.main            # normal mode (quiet)
    python -m sahay.main --debug    # debug mode (shows tool calls and HTTP)
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from sahay.config import ASSISTANT_NAME, CLINIC_NAME
from sahay.orchestrator import create_orchestrator
from sahay.services.gateway import create_gateway
from sahay.services.notifier import LogNotifier
from sahay.tools.scheduling import SchedulingService

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sahay").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description=f"{ASSISTANT_NAME} CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including tool calls and HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print(f"  {ASSISTANT_NAME} — {CLINIC_NAME} (CLI)")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    gateway = create_gateway()
    orchestrator = create_orchestrator(SchedulingService(gateway, notifier=LogNotifier()))
    history: list[dict[str, str]] = []

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye! Take care!")
                break
            if user_input.lower() == "new":
                history.clear()
                print("\n>> New conversation started.\n")
                continue

            try:
                reply = orchestrator.reply(user_input, history)
            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break
            except Exception as e:
                logger.exception("Error processing message")
                print(f"\n{ASSISTANT_NAME}: I'm sorry, something went wrong: {e}")
                print("     Please try again or type 'new' to start over.\n")
                continue

            history.append({"role": "user", "content": user_input})
            history.append({"role": "assistant", "content": reply})
            print(f"\n{ASSISTANT_NAME}: {reply}\n")
    finally:
        gateway.close()


if __name__ == "__main__":
    main()
