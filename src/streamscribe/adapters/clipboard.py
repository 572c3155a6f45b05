"""Clipboard delivery and synthetic paste into the frontmost application."""

import logging
import sys
import time

import pyperclip

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover - pynput needs a display server at import time
    Controller = None  # type: ignore
    Key = None  # type: ignore

logger = logging.getLogger(__name__)


class ClipboardService:
    def __init__(self, key_delay_s: float = 0.02) -> None:
        self._key_delay_s = key_delay_s

    def set_clipboard_text(self, text: str) -> None:
        pyperclip.copy(text)
        logger.debug("Copied %d chars to clipboard", len(text))

    def paste_into_frontmost_target(self) -> None:
        if Controller is None or Key is None:
            raise RuntimeError("pynput keyboard control is unavailable")
        modifier = Key.cmd if sys.platform == "darwin" else Key.ctrl
        keyboard = Controller()
        keyboard.press(modifier)
        try:
            keyboard.press("v")
            time.sleep(self._key_delay_s)
            keyboard.release("v")
        finally:
            keyboard.release(modifier)
        logger.debug("Sent paste shortcut")
