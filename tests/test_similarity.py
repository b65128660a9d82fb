"""Tests for SimilarityPolicy and the contradiction judge."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from helpers import FakeJudge
from memento.models import CandidateMemory, ConsolidationAction, MemoryCategory
from memento.similarity import GroqContradictionJudge, SimilarityPolicy, normalize_text

PREF = MemoryCategory.PREFERENCE


def make_response(content: str) -> Mock:
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestPolicyThresholds:
    """Tests for threshold validation."""

    def test_defaults(self):
        policy = SimilarityPolicy()
        assert policy.duplicate_threshold == 0.85
        assert policy.conflict_threshold == 0.70

    def test_misordered_thresholds_rejected(self):
        with pytest.raises(ValueError):
            SimilarityPolicy(duplicate_threshold=0.6, conflict_threshold=0.7)

    def test_is_related(self):
        policy = SimilarityPolicy()
        assert policy.is_related(0.70)
        assert not policy.is_related(0.69)


class TestPolicyClassify:
    """Tests for classifying a candidate against its closest memory."""

    @pytest.mark.asyncio
    async def test_unrelated_is_stored(self):
        policy = SimilarityPolicy(judge=FakeJudge())
        action, _ = await policy.classify(
            CandidateMemory("User has a dog", PREF), "User prefers tea", PREF, 0.4
        )
        assert action is ConsolidationAction.STORE

    @pytest.mark.asyncio
    async def test_identical_skips_without_judge_call(self):
        judge = FakeJudge({("User prefers dark mode", "User prefers dark mode")})
        policy = SimilarityPolicy(judge=judge)

        action, _ = await policy.classify(
            CandidateMemory("User prefers dark mode", PREF), "User prefers dark mode", PREF, 0.999
        )

        assert action is ConsolidationAction.SKIP
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_same_text_after_normalization_skips(self):
        policy = SimilarityPolicy(judge=FakeJudge())
        action, _ = await policy.classify(
            CandidateMemory("user prefers dark mode."), "User prefers  dark mode", MemoryCategory.FACTUAL, 0.9
        )
        assert action is ConsolidationAction.SKIP

    @pytest.mark.asyncio
    async def test_duplicate_skips(self):
        policy = SimilarityPolicy(judge=FakeJudge())
        action, reason = await policy.classify(
            CandidateMemory("User likes dark themes", PREF), "User prefers dark mode", PREF, 0.95
        )
        assert action is ConsolidationAction.SKIP
        assert "Duplicate" in reason

    @pytest.mark.asyncio
    async def test_contradiction_supersedes(self):
        judge = FakeJudge({("User prefers React", "User prefers Vue")})
        policy = SimilarityPolicy(judge=judge)

        action, _ = await policy.classify(
            CandidateMemory("User prefers Vue", PREF), "User prefers React", PREF, 0.8
        )

        assert action is ConsolidationAction.SUPERSEDE
        assert judge.calls == [("User prefers React", "User prefers Vue", PREF)]

    @pytest.mark.asyncio
    async def test_contradiction_beats_duplicate_score(self):
        """A contradicting near-duplicate supersedes instead of skipping."""
        judge = FakeJudge({("Deadline is Monday", "Deadline is Friday")})
        policy = SimilarityPolicy(judge=judge)

        action, _ = await policy.classify(
            CandidateMemory("Deadline is Friday", MemoryCategory.TEMPORAL),
            "Deadline is Monday",
            MemoryCategory.TEMPORAL,
            0.92,
        )

        assert action is ConsolidationAction.SUPERSEDE

    @pytest.mark.asyncio
    async def test_different_category_never_judged(self):
        judge = FakeJudge({("User works at Acme", "User's manager is at Acme")})
        policy = SimilarityPolicy(judge=judge)

        action, _ = await policy.classify(
            CandidateMemory("User's manager is at Acme", MemoryCategory.RELATIONSHIP),
            "User works at Acme",
            MemoryCategory.FACTUAL,
            0.75,
        )

        assert action is ConsolidationAction.STORE
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_related_compatible_is_stored(self):
        policy = SimilarityPolicy(judge=FakeJudge())
        action, _ = await policy.classify(
            CandidateMemory("User is a senior developer"), "User is a developer", MemoryCategory.FACTUAL, 0.78
        )
        assert action is ConsolidationAction.STORE

    @pytest.mark.asyncio
    async def test_no_judge_never_supersedes(self):
        policy = SimilarityPolicy()
        action, _ = await policy.classify(
            CandidateMemory("User prefers Vue", PREF), "User prefers React", PREF, 0.8
        )
        assert action is ConsolidationAction.STORE


class TestNormalizeText:
    def test_normalize(self):
        assert normalize_text("  User's  manager, is JOHN! ") == "user s manager is john"


class TestGroqContradictionJudge:
    """Tests for the LLM-backed judge."""

    @pytest.mark.asyncio
    async def test_contradiction(self):
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(return_value=make_response("CONTRADICTION"))
        judge = GroqContradictionJudge(client)

        assert await judge.contradicts("User prefers React", "User prefers Vue", PREF)

        prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert '"User prefers React"' in prompt
        assert '"User prefers Vue"' in prompt
        assert "CATEGORY: preference" in prompt

    @pytest.mark.asyncio
    async def test_compatible(self):
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(return_value=make_response(" compatible\n"))
        judge = GroqContradictionJudge(client)

        assert not await judge.contradicts("a", "b", PREF)

    @pytest.mark.asyncio
    async def test_error_counts_as_compatible(self):
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(side_effect=Exception("rate limited"))
        judge = GroqContradictionJudge(client)

        assert not await judge.contradicts("a", "b", PREF)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_compatible(self):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        client = AsyncMock()
        client.chat.completions.create = slow
        judge = GroqContradictionJudge(client, timeout=0.01)

        assert not await judge.contradicts("a", "b", PREF)
