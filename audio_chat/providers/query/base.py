"""Base interface for language model query services."""

from abc import ABC, abstractmethod
from typing import Optional


class QueryError(Exception):
    """Raised when the query service could not be reached or answered badly."""


class QueryService(ABC):
    """Abstract base class for query services."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the query service client."""
        pass

    @abstractmethod
    def query(
        self,
        context_text: str,
        instructions: str,
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        """
        Send one prompt and return the complete reply.

        Args:
            context_text: Conversation context ending with the new user text
            instructions: System instruction for the model
            temperature: Sampling temperature
            model: Model identifier, or None for the service default

        Raises:
            QueryError: the request failed or the reply was unusable
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the client."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the query service."""
        pass
