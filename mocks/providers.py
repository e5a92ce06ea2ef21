"""
Mock provider implementations for trying out the conversation loop
without a microphone, a model server or a speech API.
"""

import threading
import time
from typing import Iterable, List, Optional, Tuple
from audio_chat.providers.transcription.base import (
    TranscriptionSource,
    TranscriptionOptions,
    TranscriptionAborted,
)
from audio_chat.providers.query.base import QueryService
from audio_chat.providers.speech.base import SpeechRenderer


class MockTranscriptionSource(TranscriptionSource):
    """Returns scripted utterances, then aborts like a closed input device."""

    def __init__(self, utterances: Optional[Iterable[str]] = None, delay: float = 0.2):
        self.utterances: List[str] = list(utterances) if utterances is not None else [
            "What is the capital of France?",
            "",
            "And what about Germany?",
            "Tell me a joke.",
        ]
        self.delay = delay
        self.utterance_index = 0
        self.is_running = False
        self._stopped = threading.Event()

    def initialize(self) -> None:
        """Initialize mock transcription source."""
        self.is_running = True
        self._stopped.clear()

    def transcribe(self, options: TranscriptionOptions) -> str:
        """Simulate recording time, then return the next scripted utterance."""
        if self._stopped.wait(self.delay):
            raise TranscriptionAborted("Mock transcription stopped")

        if self.utterance_index >= len(self.utterances):
            raise TranscriptionAborted("No more scripted utterances")

        text = self.utterances[self.utterance_index]
        self.utterance_index += 1
        return text

    def stop(self) -> None:
        """Stop mock transcription source."""
        self.is_running = False
        self._stopped.set()

    def get_status(self) -> dict:
        return {
            "provider": "mock_transcription",
            "is_running": self.is_running,
            "utterances_returned": self.utterance_index,
        }


class MockQueryService(QueryService):
    """Answers with canned replies and remembers every prompt it was sent."""

    def __init__(self, replies: Optional[Iterable[str]] = None):
        self.replies: List[str] = list(replies) if replies is not None else [
            "The capital of France is Paris.",
            "The capital of Germany is Berlin.",
            "Why don't scientists trust atoms? Because they make up everything!",
        ]
        self.calls: List[Tuple[str, str, float, Optional[str]]] = []
        self.is_initialized = False

    def initialize(self) -> None:
        self.is_initialized = True

    def query(
        self,
        context_text: str,
        instructions: str,
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        self.calls.append((context_text, instructions, temperature, model))
        return self.replies[(len(self.calls) - 1) % len(self.replies)]

    def stop(self) -> None:
        self.is_initialized = False

    def get_status(self) -> dict:
        """Get mock query service status."""
        return {
            "provider": "mock_query",
            "is_initialized": self.is_initialized,
            "queries_answered": len(self.calls),
        }


class MockSpeechRenderer(SpeechRenderer):
    """Pretends to speak for a time proportional to the number of words."""

    def __init__(self, seconds_per_word: float = 0.02):
        self.seconds_per_word = seconds_per_word
        self.spoken: List[str] = []
        self._speaking_until = 0.0
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Initialize mock speech renderer."""
        pass

    def speak(self, text: str) -> None:
        self.stop_speaking()
        if not text.strip():
            return
        with self._lock:
            self.spoken.append(text)
            self._speaking_until = time.monotonic() + len(text.split()) * self.seconds_per_word

    def is_speaking(self) -> bool:
        with self._lock:
            return time.monotonic() < self._speaking_until

    def stop_speaking(self) -> None:
        with self._lock:
            self._speaking_until = 0.0

    def stop(self) -> None:
        """Stop mock speech renderer."""
        self.stop_speaking()

    def get_status(self) -> dict:
        return {
            "provider": "mock_speech",
            "is_speaking": self.is_speaking(),
            "utterances_spoken": len(self.spoken),
        }
