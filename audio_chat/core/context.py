"""Bounded conversation context sent along with every query."""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional


@dataclass
class Turn:
    """One user utterance and, once answered, the assistant's reply."""

    user_text: str
    assistant_text: Optional[str] = None


def reset_context(turn: Turn) -> str:
    """Format a finished turn as the block that seeds the next query."""
    return f">> {turn.user_text}\n\n<< \n{turn.assistant_text or ''}\n\n"


def compose_context(previous_turn: Optional[Turn], new_user_text: str) -> str:
    """Previous turn's block (if any) followed by the new user text."""
    seed = reset_context(previous_turn) if previous_turn is not None else ""
    return f"{seed}<< {new_user_text}"


class ContextWindow:
    """
    Sliding window over the last ``depth`` turns.

    The window holds formatted blocks, not raw turns: committing a turn
    appends its block and drops the oldest once ``depth`` is exceeded. With
    the default depth of 1 each commit fully replaces the previous context,
    so every query carries exactly one prior exchange plus the new text no
    matter how long the conversation runs.
    """

    def __init__(self, depth: int = 1):
        if depth < 0:
            raise ValueError(f"Context depth must be >= 0, got {depth}")
        self.depth = depth
        self._blocks: Deque[str] = deque(maxlen=depth)

    @property
    def seed(self) -> str:
        """Context carried over from previous turns."""
        return "".join(self._blocks)

    def compose(self, new_user_text: str) -> str:
        """Context for a query about ``new_user_text``."""
        return f"{self.seed}<< {new_user_text}"

    def commit(self, turn: Turn) -> None:
        """Record an answered turn as the newest context block."""
        self._blocks.append(reset_context(turn))

    def clear(self) -> None:
        self._blocks.clear()

    def __len__(self) -> int:
        return len(self._blocks)
