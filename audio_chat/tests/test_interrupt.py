"""Tests for keyboard interruption while speaking."""

import io
import os
import select
import sys
import threading
import pytest
from unittest.mock import Mock, patch
from audio_chat.core.interrupt import (
    ESCAPE,
    InterruptListener,
    KeyboardKeySource,
    KeyKind,
    KeySource,
    SpeechOutcome,
    TerminalKeySource,
    default_key_source,
)


class ScriptedKeySource(KeySource):
    """Returns queued keys one per read, then None."""

    def __init__(self, keys=()):
        self.keys = list(keys)
        self.reads = 0
        self.opened = 0
        self.closed = 0
        self.flushes = 0

    def read_key(self, timeout):
        self.reads += 1
        if self.keys:
            return self.keys.pop(0)
        return None

    def open(self):
        self.opened += 1

    def close(self):
        self.closed += 1

    def flush(self):
        self.flushes += 1


def speaking_renderer(polls_while_speaking):
    """A renderer mock that reports speech for the given number of checks."""
    renderer = Mock()
    renderer.is_speaking.side_effect = [True] * polls_while_speaking + [False] * 100
    return renderer


class TestInterruptListener:
    """Tests for InterruptListener."""

    def test_rejects_non_positive_poll_interval(self):
        with pytest.raises(ValueError):
            InterruptListener(key_source=ScriptedKeySource(), poll_interval=0)

    def test_classify_quit_keys(self):
        listener = InterruptListener(key_source=ScriptedKeySource())

        assert listener.classify("q").kind is KeyKind.QUIT
        assert listener.classify("Q").kind is KeyKind.QUIT
        assert listener.classify(ESCAPE).kind is KeyKind.QUIT
        assert listener.classify(" ").kind is KeyKind.INTERRUPT

    def test_custom_quit_keys(self):
        listener = InterruptListener(key_source=ScriptedKeySource(), quit_keys=["x"])

        assert listener.classify("x").kind is KeyKind.QUIT
        assert listener.classify("q").kind is KeyKind.INTERRUPT

    def test_no_reads_when_not_speaking(self):
        source = ScriptedKeySource(["q"])
        listener = InterruptListener(key_source=source)
        renderer = Mock()
        renderer.is_speaking.return_value = False

        assert listener.wait_while_speaking(renderer) is SpeechOutcome.FINISHED
        assert source.reads == 0
        assert source.keys == ["q"]
        assert source.flushes == 0

    def test_flushes_once_when_speech_starts(self):
        source = ScriptedKeySource()
        listener = InterruptListener(key_source=source)

        listener.wait_while_speaking(speaking_renderer(3))

        assert source.flushes == 1
        assert source.reads == 3

    def test_escape_sequence_is_not_quit(self):
        listener = InterruptListener(key_source=ScriptedKeySource(["\x1b[A"]))

        outcome = listener.wait_while_speaking(speaking_renderer(10))

        assert outcome is SpeechOutcome.INTERRUPTED

    def test_speech_finishes_without_keys(self):
        source = ScriptedKeySource()
        listener = InterruptListener(key_source=source)

        outcome = listener.wait_while_speaking(speaking_renderer(3))

        assert outcome is SpeechOutcome.FINISHED
        assert source.reads == 3
        assert listener.interruptions == 0

    def test_quit_key(self):
        listener = InterruptListener(key_source=ScriptedKeySource([None, "q"]))

        outcome = listener.wait_while_speaking(speaking_renderer(10))

        assert outcome is SpeechOutcome.QUIT
        assert listener.interruptions == 1

    def test_other_key_interrupts(self):
        listener = InterruptListener(key_source=ScriptedKeySource(["a"]))

        outcome = listener.wait_while_speaking(speaking_renderer(10))

        assert outcome is SpeechOutcome.INTERRUPTED
        assert listener.get_time_since_interruption() is not None

    def test_interrupt_does_not_stop_speech(self):
        renderer = speaking_renderer(10)
        listener = InterruptListener(key_source=ScriptedKeySource(["a"]))

        listener.wait_while_speaking(renderer)

        renderer.stop_speaking.assert_not_called()

    def test_cancel_event(self):
        source = ScriptedKeySource(["q"])
        listener = InterruptListener(key_source=source)
        cancel = threading.Event()
        cancel.set()

        outcome = listener.wait_while_speaking(speaking_renderer(10), cancel)

        assert outcome is SpeechOutcome.CANCELLED
        assert source.reads == 0

    def test_context_manager_opens_and_closes_once(self):
        source = ScriptedKeySource()
        listener = InterruptListener(key_source=source)

        with listener:
            listener.open()

        listener.close()
        assert source.opened == 1
        assert source.closed == 1

    def test_no_interruption_time_initially(self):
        listener = InterruptListener(key_source=ScriptedKeySource())

        assert listener.get_time_since_interruption() is None


class TestTerminalKeySource:
    """Tests for TerminalKeySource with a non-terminal stream."""

    def test_not_interactive_for_plain_stream(self):
        source = TerminalKeySource(stream=io.StringIO())

        assert source.interactive is False

    @patch("audio_chat.core.interrupt.time.sleep")
    def test_read_key_waits_out_timeout(self, mock_sleep):
        source = TerminalKeySource(stream=io.StringIO())

        assert source.read_key(0.05) is None
        mock_sleep.assert_called_once_with(0.05)

    def test_open_and_close_are_noops(self):
        source = TerminalKeySource(stream=io.StringIO())

        source.open()
        source.close()

        assert source._saved_attributes is None


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX pseudo-terminal")
class TestTerminalKeySourceOnPty:
    """Tests for TerminalKeySource reading from a pseudo-terminal."""

    def setup_method(self):
        """Set up test fixtures."""
        self.master, slave = os.openpty()
        self.stream = os.fdopen(slave, "rb", buffering=0)
        self.source = TerminalKeySource(stream=self.stream)
        self.source.open()

    def teardown_method(self):
        self.source.close()
        self.stream.close()
        os.close(self.master)

    def type_keys(self, data):
        os.write(self.master, data)
        ready, _, _ = select.select([self.stream.fileno()], [], [], 1.0)
        assert ready

    def test_arrow_key_is_one_key(self):
        self.type_keys(b"\x1b[A")

        assert self.source.read_key(1.0) == "\x1b[A"
        assert self.source.read_key(0.05) is None

    def test_bare_escape(self):
        self.type_keys(b"\x1b")

        assert self.source.read_key(1.0) == ESCAPE

    def test_multibyte_character_is_one_key(self):
        self.type_keys("é".encode("utf-8"))

        assert self.source.read_key(1.0) == "é"
        assert self.source.read_key(0.05) is None

    def test_flush_discards_typed_keys(self):
        self.type_keys(b"abc")

        self.source.flush()

        assert self.source.read_key(0.05) is None

    def test_arrow_key_interrupts_speech(self):
        listener = InterruptListener(key_source=self.source, poll_interval=0.02)
        typist = threading.Timer(0.1, os.write, args=(self.master, b"\x1b[A"))
        typist.start()

        outcome = listener.wait_while_speaking(speaking_renderer(200))
        typist.join()

        assert outcome is SpeechOutcome.INTERRUPTED
        assert self.source.read_key(0.05) is None

    def test_keys_typed_before_speech_are_ignored(self):
        self.type_keys(b"x")
        listener = InterruptListener(key_source=self.source, poll_interval=0.01)

        outcome = listener.wait_while_speaking(speaking_renderer(3))

        assert outcome is SpeechOutcome.FINISHED
        assert listener.interruptions == 0


class SpecialKey:
    """Stands in for a pynput special key such as ``Key.up``."""

    char = None

    def __init__(self, name):
        self.name = name

    def __str__(self):
        return f"Key.{self.name}"


class TestKeyboardKeySource:
    """Tests for KeyboardKeySource with a patched pynput module."""

    def setup_method(self):
        """Set up test fixtures."""
        self.keyboard = Mock()
        self.patcher = patch("audio_chat.core.interrupt._keyboard", return_value=self.keyboard)
        self.patcher.start()
        self.source = KeyboardKeySource()
        self.source.open()
        self.on_press = self.keyboard.Listener.call_args.kwargs["on_press"]

    def teardown_method(self):
        self.source.close()
        self.patcher.stop()

    def test_listener_started_once(self):
        self.source.open()

        self.keyboard.Listener.assert_called_once()
        self.keyboard.Listener.return_value.start.assert_called_once()

    def test_keys_are_read_in_order(self):
        self.on_press(Mock(char="a"))
        self.on_press(self.keyboard.Key.esc)
        self.on_press(SpecialKey("up"))

        assert self.source.read_key(0.1) == "a"
        assert self.source.read_key(0.1) == ESCAPE
        assert self.source.read_key(0.1) == "Key.up"
        assert self.source.read_key(0.01) is None

    def test_only_escape_quits(self):
        listener = InterruptListener(key_source=self.source, poll_interval=0.01)
        self.on_press(SpecialKey("f1"))

        outcome = listener.wait_while_speaking(speaking_renderer(10))

        # The key was pressed before speech started
        assert outcome is SpeechOutcome.FINISHED

        self.on_press(SpecialKey("f1"))
        assert listener.poll_for_key().kind is KeyKind.INTERRUPT
        self.on_press(self.keyboard.Key.esc)
        assert listener.poll_for_key().kind is KeyKind.QUIT

    def test_flush(self):
        self.on_press(Mock(char="a"))
        self.on_press(Mock(char="b"))

        self.source.flush()

        assert self.source.read_key(0.01) is None

    def test_close_stops_listener(self):
        listener = self.keyboard.Listener.return_value

        self.source.close()

        listener.stop.assert_called_once()


class TestDefaultKeySource:
    """Tests for picking the key source."""

    def test_terminal_when_not_interactive(self):
        assert isinstance(default_key_source(io.StringIO()), TerminalKeySource)

    def test_keyboard_listener_with_display(self):
        stream = Mock()
        stream.isatty.return_value = True

        with patch("audio_chat.core.interrupt.sys.platform", "linux"), \
             patch.dict(os.environ, {"DISPLAY": ":0"}):
            source = default_key_source(stream)

        assert isinstance(source, KeyboardKeySource)

    def test_terminal_without_display(self):
        stream = Mock()
        stream.isatty.return_value = True
        env = {k: v for k, v in os.environ.items() if k not in ("DISPLAY", "WAYLAND_DISPLAY")}

        with patch("audio_chat.core.interrupt.sys.platform", "linux"), \
             patch.dict(os.environ, env, clear=True):
            source = default_key_source(stream)

        assert isinstance(source, TerminalKeySource)
        assert source.stream is stream
