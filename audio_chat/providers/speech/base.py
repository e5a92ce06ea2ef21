"""Base interface for speech renderers."""

from abc import ABC, abstractmethod
from typing import Optional


class RenderError(Exception):
    """Raised when speech output could not be started."""


class SpeechRenderer(ABC):
    """Abstract base class for speech renderers.

    ``speak`` returns immediately; playback continues in the background
    until it finishes or ``stop_speaking`` is called.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the speech renderer."""
        pass

    @abstractmethod
    def speak(self, text: str) -> None:
        """
        Start speaking the given text without waiting for it to finish.

        Raises:
            RenderError: speech could not be started
        """
        pass

    @abstractmethod
    def is_speaking(self) -> bool:
        """Whether speech is being synthesized or played right now."""
        pass

    def take_error(self) -> Optional[str]:
        """
        Return the failure of the last ``speak`` that happened after it
        returned, if any. Each failure is reported once.
        """
        return None

    @abstractmethod
    def stop_speaking(self) -> None:
        """Stop current speech output."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the renderer and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the speech renderer."""
        pass
