"""Duplicate and contradiction detection between memories."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from groq import AsyncGroq

from .config import DEFAULT_MODEL
from .models import CandidateMemory, ConsolidationAction, MemoryCategory

logger = logging.getLogger(__name__)

CONTRADICTION_PROMPT = """Decide whether two memories about the same user contradict each other.

EXISTING MEMORY: "{existing}"
NEW MEMORY: "{new}"
CATEGORY: {category}

They contradict when both cannot be true at the same time, for example
"User prefers React" vs "User prefers Vue" or "User's manager is John" vs
"User's manager is Sarah". A more specific or related statement is
compatible, for example "User is a developer" vs "User is a senior
developer" or "User prefers dark mode" vs "User likes minimalist UI".

Answer with exactly one word: CONTRADICTION or COMPATIBLE"""


class ContradictionJudge(Protocol):
    """Decides whether a new memory contradicts an existing one."""

    async def contradicts(
        self, existing: str, new: str, category: MemoryCategory
    ) -> bool:
        ...


class GroqContradictionJudge:
    """Asks a Groq model whether two memories contradict each other."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = DEFAULT_MODEL,
        timeout: float = 30.0,
    ) -> None:
        self.client = llm_client
        self.model = model
        self.timeout = timeout

    async def contradicts(
        self, existing: str, new: str, category: MemoryCategory
    ) -> bool:
        """Return True only if the model answers CONTRADICTION.

        Errors and timeouts count as compatible.
        """
        prompt = CONTRADICTION_PROMPT.format(
            existing=existing, new=new, category=category.value
        )
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0.1,
                    max_tokens=20,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Contradiction check timed out after %.0fs", self.timeout)
            return False
        except Exception as e:
            logger.warning(f"Contradiction check failed: {e}")
            return False

        answer = (response.choices[0].message.content or "").strip().upper()
        return "CONTRADICTION" in answer


def normalize_text(text: str) -> str:
    """Lowercase and collapse punctuation and whitespace for comparison."""
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class SimilarityPolicy:
    """Thresholds and comparator used to classify a candidate memory.

    Attributes:
        duplicate_threshold: Similarity at or above which a compatible
            neighbor is treated as the same memory.
        conflict_threshold: Neighbors below this are unrelated; at or above
            it a same-category neighbor is checked for contradiction.
        identical_threshold: Similarity treated as a restatement without
            consulting the judge.
        judge: Contradiction comparator; None disables supersession.
    """

    duplicate_threshold: float = 0.85
    conflict_threshold: float = 0.70
    identical_threshold: float = 0.98
    judge: ContradictionJudge | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not (
            0.0 <= self.conflict_threshold
            <= self.duplicate_threshold
            <= self.identical_threshold
            <= 1.0
        ):
            raise ValueError(
                "Thresholds must satisfy 0 <= conflict <= duplicate <= identical <= 1"
            )

    def is_related(self, score: float) -> bool:
        return score >= self.conflict_threshold

    async def classify(
        self,
        candidate: CandidateMemory,
        existing_content: str,
        existing_category: MemoryCategory,
        score: float,
    ) -> tuple[ConsolidationAction, str]:
        """Classify a candidate against its closest existing memory.

        Returns:
            The action and a short human-readable reason.
        """
        if score < self.conflict_threshold:
            return ConsolidationAction.STORE, "No related memory"

        if score >= self.identical_threshold or (
            normalize_text(candidate.content) == normalize_text(existing_content)
        ):
            return ConsolidationAction.SKIP, f"Restates existing memory ({score:.0%})"

        if self.judge is not None and candidate.category == existing_category:
            if await self.judge.contradicts(
                existing_content, candidate.content, candidate.category
            ):
                return ConsolidationAction.SUPERSEDE, "Contradicts existing memory"

        if score >= self.duplicate_threshold:
            return ConsolidationAction.SKIP, f"Duplicate of existing memory ({score:.0%})"

        return ConsolidationAction.STORE, "New distinct memory"
