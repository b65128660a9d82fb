"""Memory extraction from conversations using an LLM."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from groq import AsyncGroq

from .config import DEFAULT_MODEL
from .errors import ValidationError
from .models import CandidateMemory, MemoryCategory, clamp_importance

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You extract durable memories about the user from a conversation so they can be recalled in future conversations.

Categories:
- factual: facts about the user, their work, projects or situation
- preference: likes, dislikes and preferred ways of working
- relationship: people, companies or organisations the user mentions
- temporal: deadlines, upcoming events and schedules

Rules:
- Only extract specific information that will still be useful later
- Write each memory as a clear standalone statement ("User works at Acme")
- importance is a number from 0.0 to 1.0 (1.0 = essential to remember)
- Skip greetings, generic questions and one-off technical details
- If there is nothing worth remembering, return an empty list

Return ONLY valid JSON:
{
  "memories": [
    {"content": "<statement>", "category": "factual|preference|relationship|temporal", "importance": 0.0}
  ]
}

Examples:
  {"content": "User is a software engineer building a desktop app", "category": "factual", "importance": 0.7}
  {"content": "User prefers concise code examples", "category": "preference", "importance": 0.6}
  {"content": "User's manager is named Alex", "category": "relationship", "importance": 0.5}
  {"content": "User has a product demo next Tuesday", "category": "temporal", "importance": 0.8}
"""


class MemoryExtractor(Protocol):
    """Turns a conversation transcript into candidate memories."""

    async def extract(self, transcript: str) -> list[CandidateMemory]:
        """Return candidate memories; never raises."""
        ...


class GroqMemoryExtractor:
    """Extracts memories from a transcript with a Groq chat completion."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
            timeout: Seconds to wait for the completion before giving up.
        """
        self.client = llm_client
        self.model = model
        self.timeout = timeout

    async def extract(self, transcript: str) -> list[CandidateMemory]:
        """Extract memories from a conversation transcript.

        Args:
            transcript: Formatted conversation ("USER: ...\\n\\nASSISTANT: ...").

        Returns:
            List of candidate memories, empty if none found or on error.
        """
        if not transcript.strip():
            return []

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                        {
                            "role": "user",
                            "content": f"Extract memories from this conversation:\n\n{transcript}",
                        },
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.1,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Memory extraction timed out after %.0fs", self.timeout)
            return []
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")
            return []

        try:
            if not response.choices:
                raise ValidationError("Response has no choices")
            memories = parse_extraction(response.choices[0].message.content or "")
        except ValidationError as e:
            logger.warning(f"Failed to parse extraction response: {e}")
            return []

        logger.info("Extracted %d memories", len(memories))
        return memories


def parse_extraction(content: str) -> list[CandidateMemory]:
    """Parse an LLM response into validated candidate memories.

    Unknown categories become 'factual', importance is clamped to [0, 1]
    and items without content are skipped.

    Raises:
        ValidationError: If the response is not the expected JSON shape.
    """
    json_str = _strip_code_fence(content.strip())

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON: {e}") from e

    # A bare array is accepted as the memories list
    if isinstance(data, dict):
        items = data.get("memories")
    else:
        items = data
    if not isinstance(items, list):
        raise ValidationError("missing 'memories' list")

    memories = []
    for item in items:
        memory = _to_candidate(item)
        if memory is None:
            logger.debug(f"Skipping invalid memory item: {item}")
            continue
        memories.append(memory)
    return memories


def _to_candidate(item: Any) -> CandidateMemory | None:
    if not isinstance(item, dict):
        return None
    content = item.get("content")
    if not isinstance(content, str) or not content.strip():
        return None
    return CandidateMemory(
        content=content.strip(),
        category=MemoryCategory.parse(item.get("category")),
        importance=clamp_importance(item.get("importance")),
    )


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code block, if present."""
    if not text.startswith("```"):
        return text
    lines = [line for line in text.split("\n") if not line.startswith("```")]
    return "\n".join(lines)
