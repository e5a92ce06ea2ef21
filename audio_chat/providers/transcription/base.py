"""Base interface for transcription sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class TranscriptionError(Exception):
    """Raised when audio could not be recorded or transcribed."""


class TranscriptionAborted(TranscriptionError):
    """Raised when recording was aborted (device closed or source stopped).

    Not a failure: the conversation loop treats it as a normal shutdown.
    """


@dataclass
class TranscriptionOptions:
    """Options for a single record-and-transcribe call."""

    language: Optional[str] = "en"
    use_desktop_audio: bool = False
    silence_threshold: float = 0.01
    max_silence_seconds: float = 2.0
    max_duration_seconds: float = 30.0


class TranscriptionSource(ABC):
    """Abstract base class for transcription sources."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the transcription source."""
        pass

    @abstractmethod
    def transcribe(self, options: TranscriptionOptions) -> str:
        """
        Record one utterance and return the recognized text.

        Blocks until silence or the maximum duration is reached. Returns an
        empty string when nothing but silence was captured.

        Raises:
            TranscriptionAborted: recording was aborted
            TranscriptionError: any other failure
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Abort any recording in progress and release resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the transcription source."""
        pass
