"""Keyboard interruption of speech playback."""

import os
import queue
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
import structlog

from ..providers.speech.base import SpeechRenderer

if sys.platform == "win32":
    import msvcrt
else:
    import select
    import termios
    import tty


logger = structlog.get_logger()

ESCAPE = "\x1b"
DEFAULT_QUIT_KEYS = ("q", "Q", ESCAPE)

# How long to wait for the rest of an escape sequence or a multi-byte character
SEQUENCE_TIMEOUT = 0.05


def _keyboard():
    """Import pynput's keyboard module on first use; it needs a display server."""
    from pynput import keyboard

    return keyboard


class KeyKind(Enum):
    """How the conversation reacts to a key press."""

    QUIT = "quit"
    INTERRUPT = "interrupt"


@dataclass(frozen=True)
class KeyEvent:
    key: str
    kind: KeyKind


class SpeechOutcome(Enum):
    """How the wait for speech to finish ended."""

    FINISHED = "finished"
    INTERRUPTED = "interrupted"
    QUIT = "quit"
    CANCELLED = "cancelled"


class KeySource(ABC):
    """Non-blocking source of single key presses."""

    @abstractmethod
    def read_key(self, timeout: float) -> Optional[str]:
        """Return a pressed key, or None if nothing arrived within ``timeout`` seconds."""
        pass

    def open(self) -> None:
        """Prepare the source for reading."""

    def close(self) -> None:
        """Release the source."""

    def flush(self) -> None:
        """Discard keys pressed before now."""


class KeyboardKeySource(KeySource):
    """
    Key presses from a pynput keyboard listener.

    The listener thread runs between ``open`` and ``close`` and publishes
    every press to a queue that ``read_key`` waits on. Printable keys are
    reported as their character, Esc as ``ESCAPE`` and other special keys
    by name (``Key.up``), so only Esc can match a quit key.
    """

    def __init__(self):
        self._keys: "queue.Queue[str]" = queue.Queue()
        self._keyboard = None
        self._listener = None

    def open(self) -> None:
        if self._listener is not None:
            return
        self._keyboard = _keyboard()
        self._listener = self._keyboard.Listener(on_press=self._on_press)
        self._listener.start()
        logger.debug("Keyboard listener started")

    def close(self) -> None:
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
        logger.debug("Keyboard listener stopped")

    def _on_press(self, key) -> None:
        if key == self._keyboard.Key.esc:
            self._keys.put(ESCAPE)
            return
        char = getattr(key, "char", None)
        self._keys.put(char if char else str(key))

    def read_key(self, timeout: float) -> Optional[str]:
        try:
            return self._keys.get(timeout=timeout)
        except queue.Empty:
            return None

    def flush(self) -> None:
        while True:
            try:
                self._keys.get_nowait()
            except queue.Empty:
                return


class TerminalKeySource(KeySource):
    """
    Reads key presses from the controlling terminal.

    On POSIX the terminal is switched to cbreak mode between ``open`` and
    ``close`` so keys arrive without Enter; Ctrl+C keeps raising
    KeyboardInterrupt. A key that sends several bytes (arrows, function
    keys, non-ASCII characters) is read whole and reported as one key.
    When stdin is not a terminal no keys are ever reported and
    ``read_key`` just waits out its timeout.
    """

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self._saved_attributes = None
        self._fd: Optional[int] = None

    @property
    def interactive(self) -> bool:
        try:
            return self.stream.isatty()
        except (AttributeError, ValueError):
            return False

    def open(self) -> None:
        if sys.platform == "win32" or not self.interactive:
            return
        self._fd = self.stream.fileno()
        self._saved_attributes = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)

    def close(self) -> None:
        if self._saved_attributes is not None and self._fd is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attributes)
            self._saved_attributes = None
            self._fd = None

    def flush(self) -> None:
        if not self.interactive:
            return
        if sys.platform == "win32":
            while msvcrt.kbhit():
                msvcrt.getwch()
            return
        fd = self._fd if self._fd is not None else self.stream.fileno()
        termios.tcflush(fd, termios.TCIFLUSH)

    def read_key(self, timeout: float) -> Optional[str]:
        if not self.interactive:
            time.sleep(timeout)
            return None

        if sys.platform == "win32":
            return self._read_key_windows(timeout)

        fd = self._fd if self._fd is not None else self.stream.fileno()
        ready, _, _ = select.select([fd], [], [], timeout)
        if not ready:
            return None
        raw = os.read(fd, 1)
        if not raw:
            return None

        if raw == ESCAPE.encode():
            raw += self._read_pending(fd)
        else:
            raw += self._read_pending(fd, limit=_continuation_length(raw[0]))
        return raw.decode("utf-8", errors="replace")

    def _read_pending(self, fd: int, limit: Optional[int] = None) -> bytes:
        """Read bytes that follow within SEQUENCE_TIMEOUT, at most ``limit`` of them."""
        pending = b""
        while limit is None or len(pending) < limit:
            ready, _, _ = select.select([fd], [], [], SEQUENCE_TIMEOUT)
            if not ready:
                break
            chunk = os.read(fd, 1 if limit is not None else 16)
            if not chunk:
                break
            pending += chunk
        return pending

    def _read_key_windows(self, timeout: float) -> Optional[str]:
        deadline = time.monotonic() + timeout
        while True:
            if msvcrt.kbhit():
                ch = msvcrt.getwch()
                # Arrow and function keys arrive as a two character sequence
                if ch in ("\x00", "\xe0"):
                    return ch + msvcrt.getwch()
                return ch
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.01)


def _continuation_length(lead: int) -> int:
    """Number of bytes following a UTF-8 lead byte."""
    if lead >= 0xF0:
        return 3
    if lead >= 0xE0:
        return 2
    if lead >= 0xC0:
        return 1
    return 0


def default_key_source(stream=None) -> KeySource:
    """
    Pick the key source for an interactive session.

    A pynput listener is used when stdin is a terminal and a desktop
    session is available. Without a display (SSH, containers) keys are
    read from the terminal itself.
    """
    stream = stream or sys.stdin
    terminal = TerminalKeySource(stream)
    if not terminal.interactive:
        return terminal
    has_display = (
        sys.platform in ("win32", "darwin")
        or bool(os.environ.get("DISPLAY"))
        or bool(os.environ.get("WAYLAND_DISPLAY"))
    )
    if has_display:
        return KeyboardKeySource()
    return terminal


class InterruptListener:
    """Watches for key presses while the assistant is speaking."""

    def __init__(
        self,
        key_source: Optional[KeySource] = None,
        quit_keys: Iterable[str] = DEFAULT_QUIT_KEYS,
        poll_interval: float = 0.05,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

        self.key_source = key_source or default_key_source()
        self.quit_keys = frozenset(quit_keys)
        self.poll_interval = poll_interval

        self._lock = threading.Lock()
        self._is_open = False
        self.interruptions = 0
        self._last_interruption_time = 0.0

    def __enter__(self) -> "InterruptListener":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        with self._lock:
            if self._is_open:
                return
            self.key_source.open()
            self._is_open = True

    def close(self) -> None:
        with self._lock:
            if not self._is_open:
                return
            self.key_source.close()
            self._is_open = False

    def classify(self, key: str) -> KeyEvent:
        kind = KeyKind.QUIT if key in self.quit_keys else KeyKind.INTERRUPT
        return KeyEvent(key=key, kind=kind)

    def poll_for_key(self) -> Optional[KeyEvent]:
        """Wait at most one poll interval for a key press."""
        key = self.key_source.read_key(self.poll_interval)
        if key is None:
            return None
        return self.classify(key)

    def wait_while_speaking(
        self,
        renderer: SpeechRenderer,
        cancel_event: Optional[threading.Event] = None,
    ) -> SpeechOutcome:
        """
        Block until speech ends, a key is pressed, or ``cancel_event`` is set.

        Returns immediately with FINISHED when the renderer is already
        silent, without reading any key. Keys pressed before speech started
        are discarded.
        """
        flushed = False
        while renderer.is_speaking():
            if cancel_event is not None and cancel_event.is_set():
                return SpeechOutcome.CANCELLED

            if not flushed:
                self.key_source.flush()
                flushed = True

            event = self.poll_for_key()
            if event is None:
                continue

            with self._lock:
                self.interruptions += 1
                self._last_interruption_time = time.time()

            if event.kind is KeyKind.QUIT:
                logger.info("Quit key pressed during speech")
                return SpeechOutcome.QUIT

            logger.info("Speech interrupted by key press")
            return SpeechOutcome.INTERRUPTED

        return SpeechOutcome.FINISHED

    def get_time_since_interruption(self) -> Optional[float]:
        """Seconds since the last key press during speech."""
        if self._last_interruption_time == 0:
            return None
        return time.time() - self._last_interruption_time
