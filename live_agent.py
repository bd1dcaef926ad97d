#!/usr/bin/env python3
"""
Live Agent

Talk to a Gemini Live voice agent from the terminal. Prints status changes
and finished transcript lines.

Keys:
  m   - toggle mute
  h   - toggle hold
  t   - translate the transcript (--translate-to)
  Esc - end the conversation
"""

import argparse
import asyncio
import logging
import signal
import sys

from config import get_api_key, load_config
from errors import LiveSessionError
from languages import AVAILABLE_VOICES, all_language_accents
from live_session import LiveSession

# Key character -> session action name
KEY_ACTIONS = {
    "m": "mute",
    "h": "hold",
    "t": "translate",
}


class ConsoleView:
    """Prints finished transcript lines once each, plus status and errors."""

    def __init__(self, translate_to=""):
        self.translate_to = translate_to
        self._printed = set()
        self._printed_translations = set()

    def on_status(self, status):
        print(f"[{status.value}]", flush=True)

    def on_error(self, message):
        print(f"Error: {message}", flush=True)

    def on_transcript(self, messages):
        for message in messages:
            if not message.is_final:
                continue
            label = "You" if message.sender.value == "user" else "Agent"
            if message.id not in self._printed:
                self._printed.add(message.id)
                print(f"{label}: {message.text}", flush=True)
            translated = message.translations.get(self.translate_to)
            if translated and message.id not in self._printed_translations:
                self._printed_translations.add(message.id)
                print(f"  ({self.translate_to}) {translated}", flush=True)


def key_action(key):
    """Map a pynput key to an action name, or None."""
    from pynput import keyboard

    if key == keyboard.Key.esc:
        return "stop"
    char = getattr(key, "char", None)
    if char:
        return KEY_ACTIONS.get(char.lower())
    return None


async def run(args, config, api_key):
    view = ConsoleView(translate_to=args.translate_to)
    session = LiveSession(
        api_key=api_key,
        config=config,
        on_transcript=view.on_transcript,
        on_status=view.on_status,
        on_error=view.on_error,
    )
    loop = asyncio.get_running_loop()
    done = asyncio.Event()

    def dispatch(action):
        if action == "mute":
            muted = session.toggle_mute()
            print("Live agent: Muted" if muted else "Live agent: Unmuted", flush=True)
        elif action == "hold":
            held = session.toggle_hold()
            print("Live agent: On hold" if held else "Live agent: Resumed", flush=True)
        elif action == "translate":
            if not args.translate_to:
                print("Live agent: No --translate-to language set", flush=True)
                return
            loop.create_task(session.translate_transcript(args.translate_to))
        elif action == "stop":
            done.set()

    def on_press(key):
        action = key_action(key)
        if action:
            loop.call_soon_threadsafe(dispatch, action)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, done.set)

    from pynput import keyboard
    listener = keyboard.Listener(on_press=on_press)
    listener.start()

    try:
        await session.start(args.language, args.voice)
    except LiveSessionError as e:
        listener.stop()
        print(f"Live agent: Could not start: {e}", flush=True)
        return 1

    print("Live agent: Connected. m=mute, h=hold, t=translate, Esc=quit", flush=True)
    closed = loop.create_task(session.wait_closed())
    stop_requested = loop.create_task(done.wait())
    await asyncio.wait({closed, stop_requested}, return_when=asyncio.FIRST_COMPLETED)
    for task in (closed, stop_requested):
        task.cancel()

    listener.stop()
    await session.stop()
    print("Live agent: Session ended", flush=True)
    return 0


def main():
    config = load_config()

    codes = [code for code, _ in all_language_accents()]

    parser = argparse.ArgumentParser(description="Live voice conversation with a Gemini agent")
    parser.add_argument("--language", "-l", default=config["language_accent"], choices=codes,
                        help="Language-accent code, e.g. english-us (see --list-languages)")
    parser.add_argument("--voice", "-v", default=config.get("voice"), choices=AVAILABLE_VOICES,
                        help="Prebuilt voice (default: the accent's voice)")
    parser.add_argument("--translate-to", "-t", default=config.get("translate_to", ""),
                        choices=codes + [""],
                        help="Language-accent code the 't' key translates into")
    parser.add_argument("--list-languages", action="store_true",
                        help="List language-accent codes and exit")
    parser.add_argument("--debug", action="store_true", default=config.get("debug_mode", False),
                        help="Verbose logging")
    args = parser.parse_args()

    if args.list_languages:
        for code, label in all_language_accents():
            print(f"  {code:<16} {label}")
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(name)s: %(message)s",
    )

    api_key = get_api_key()
    if not api_key:
        print("Error: set GEMINI_API_KEY or write the key to ~/.config/gemini/api_key", flush=True)
        return 1

    return asyncio.run(run(args, config, api_key))


if __name__ == '__main__':
    sys.exit(main())
