"""Chain of handlers that can intercept a transcribed utterance before it is queried."""

import re
import string
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Iterable, List, Optional
import structlog


logger = structlog.get_logger()


class HandlerResult(Enum):
    """Outcome of offering an utterance to a handler."""

    HANDLED = "handled"
    PASSTHROUGH = "passthrough"


class TurnHandler(ABC):
    """A link in the handler chain."""

    @abstractmethod
    def try_handle(self, text: str) -> HandlerResult:
        """Consume ``text`` and return HANDLED, or leave it for the next link."""
        pass


def normalize_phrase(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = text.lower().translate(str.maketrans("", "", string.punctuation))
    return re.sub(r"\s+", " ", text).strip()


class PhraseHandler(TurnHandler):
    """Runs ``action`` when the whole utterance matches one of ``phrases``.

    Matching ignores case, punctuation and extra whitespace, so a
    transcription of "Stop listening." matches the phrase "stop listening".
    """

    def __init__(self, phrases: Iterable[str], action: Callable[[str], None], name: str = "phrase"):
        self.phrases = {normalize_phrase(p) for p in phrases if normalize_phrase(p)}
        self.action = action
        self.name = name

    def try_handle(self, text: str) -> HandlerResult:
        if normalize_phrase(text) not in self.phrases:
            return HandlerResult.PASSTHROUGH

        logger.info("Utterance handled by phrase", handler=self.name)
        self.action(text)
        return HandlerResult.HANDLED


class HandlerChain:
    """Ordered handlers; the first one to handle an utterance wins."""

    def __init__(self, handlers: Optional[List[TurnHandler]] = None):
        self.handlers: List[TurnHandler] = list(handlers or [])

    def add(self, handler: TurnHandler) -> "HandlerChain":
        self.handlers.append(handler)
        return self

    def try_handle(self, text: str) -> HandlerResult:
        for handler in self.handlers:
            if handler.try_handle(text) is HandlerResult.HANDLED:
                return HandlerResult.HANDLED
        return HandlerResult.PASSTHROUGH

    def __len__(self) -> int:
        return len(self.handlers)
