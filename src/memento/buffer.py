"""In-memory buffer of conversation turns awaiting extraction."""

import logging
import time
from collections import Counter
from typing import Callable

from .models import BufferedTurn

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "main_chat"


class MessageBuffer:
    """Holds unprocessed conversation turns.

    The buffer is drained with take(), which hands over the current turns and
    leaves an empty buffer behind in the same step. Turns added while a
    previous batch is being processed therefore land in the next batch.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._turns: list[BufferedTurn] = []

    def add(self, role: str, content: str, source: str = DEFAULT_SOURCE) -> BufferedTurn:
        """Append a turn to the buffer."""
        turn = BufferedTurn(
            role=role,
            content=content,
            source=source,
            timestamp=self._clock(),
        )
        self._turns.append(turn)
        logger.debug(
            "Buffered %s turn from %s (buffer size: %d)", role, source, len(self._turns)
        )
        return turn

    def add_exchange(
        self, user_message: str, assistant_message: str, source: str = DEFAULT_SOURCE
    ) -> None:
        """Append a user message and the assistant reply."""
        self.add("user", user_message, source)
        self.add("assistant", assistant_message, source)

    def take(self) -> list[BufferedTurn]:
        """Return all buffered turns and clear the buffer."""
        turns, self._turns = self._turns, []
        return turns

    def __len__(self) -> int:
        return len(self._turns)

    @staticmethod
    def format(turns: list[BufferedTurn]) -> str:
        """Render turns as a transcript for the extractor."""
        return "\n\n".join(
            f"{turn.role.upper()}: {turn.content}" for turn in turns if turn.content.strip()
        )

    @staticmethod
    def dominant_source(turns: list[BufferedTurn]) -> str | None:
        """Most common source among the turns (first seen wins a tie)."""
        if not turns:
            return None
        counts = Counter(turn.source for turn in turns)
        return max(counts, key=lambda source: counts[source])
