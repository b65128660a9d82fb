"""Fakes and helpers shared by memory tests."""

import asyncio
import math
from datetime import datetime, timedelta, timezone

from memento.errors import TransientIOError
from memento.models import CandidateMemory, MemoryCategory


COLLECTION = "test-knowledge"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeEmbedder:
    """Embedder with hand-placed vectors.

    Every unseen text gets its own axis, so unrelated texts have similarity
    0. place() puts a text at an exact cosine similarity to another one.
    """

    DIM = 64

    def __init__(self) -> None:
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self._next_axis = 0

    def _axis(self) -> list[float]:
        if self._next_axis >= self.DIM:
            raise RuntimeError("FakeEmbedder ran out of axes")
        vector = [0.0] * self.DIM
        vector[self._next_axis] = 1.0
        self._next_axis += 1
        return vector

    def place(self, text: str, near: str | None = None, score: float = 1.0) -> list[float]:
        """Assign a vector to text with cosine similarity score to near."""
        fresh = self._axis()
        if near is None:
            vector = fresh
        else:
            base = self.vectors[near]
            rest = math.sqrt(max(0.0, 1.0 - score * score))
            vector = [score * b + rest * f for b, f in zip(base, fresh)]
        self.vectors[text] = vector
        return vector

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise TransientIOError(f"Embedding failed for {text!r}")
        if text not in self.vectors:
            self.place(text)
        return list(self.vectors[text])


class FakeExtractor:
    """Extractor returning queued candidate lists."""

    def __init__(self, responses: list[list[CandidateMemory]] | None = None) -> None:
        self.responses = list(responses or [])
        self.transcripts: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def extract(self, transcript: str) -> list[CandidateMemory]:
        self.transcripts.append(transcript)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.responses.pop(0) if self.responses else []


class FakeJudge:
    """Contradiction judge answering from a fixed set of (existing, new) pairs."""

    def __init__(self, contradictions: set[tuple[str, str]] | None = None) -> None:
        self.contradictions = contradictions or set()
        self.calls: list[tuple[str, str, MemoryCategory]] = []

    async def contradicts(self, existing: str, new: str, category: MemoryCategory) -> bool:
        self.calls.append((existing, new, category))
        return (existing, new) in self.contradictions


class ManualSleep:
    """Sleep replacement that only returns when fire() is called."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        await future

    @property
    def pending(self) -> int:
        return sum(1 for future in self._waiters if not future.done())

    def fire(self) -> None:
        for future in self._waiters:
            if not future.done():
                future.set_result(None)
        self._waiters.clear()


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
