"""Global hotkey listener based on pynput."""

import asyncio
import logging
import threading
from typing import Callable

try:
    from pynput import keyboard
except Exception:  # pragma: no cover - pynput needs a display server at import time
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class GlobalHotkey:
    """Calls ``on_trigger`` on the event loop each time the key goes down.

    Auto-repeat while the key is held does not trigger again.
    """

    def __init__(self, hotkey_name: str = "Key.f9") -> None:
        self._hotkey_name = hotkey_name
        self._listener = None
        self._pressed = False
        self._lock = threading.Lock()

    def start(self, loop: asyncio.AbstractEventLoop, on_trigger: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not available")

        def _on_press(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                if self._pressed:
                    return
                self._pressed = True
            loop.call_soon_threadsafe(on_trigger)

        def _on_release(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                self._pressed = False

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()
        logger.info("Hotkey %s armed", self._hotkey_name)

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
