"""Common utilities for the pipeline services.

This module provides reusable helpers for:
- Keyword and regex matching over raw queries
- Extracting the JSON object from generator output
- Trimming conversation history to a window
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from typing import Any

from card_advisor.models.card_models import ConversationTurn
from card_advisor.services.errors import MalformedOutput


def contains_any_phrase(text: str, phrases: Iterable[str]) -> bool:
    """Check if text contains any of the given phrases.

    Args:
        text: Text to search in (will be lowercased).
        phrases: Lowercase phrases to look for.

    Returns:
        True if any phrase is found in text.

    Example:
        >>> contains_any_phrase("What's the BEST travel card?", ["best", "recommend"])
        True
    """
    text_lower = text.lower()
    return any(phrase in text_lower for phrase in phrases)


def matched_phrases(text: str, phrases: Iterable[str]) -> list[str]:
    """Return the phrases found in text, in the order given."""
    text_lower = text.lower()
    return [phrase for phrase in phrases if phrase in text_lower]


def matches_any_pattern(text: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Check if any compiled pattern matches somewhere in text.

    Example:
        >>> matches_any_pattern("Do any of these cards...", [re.compile(r"any of these", re.I)])
        True
    """
    return any(pattern.search(text) for pattern in patterns)


def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    """Compile case-insensitive regex patterns."""
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the JSON object out of generator output.

    The whole text is tried first; if that fails, the span between the
    first ``{`` and the last ``}`` is tried, which tolerates prose or code
    fences around the object.

    Args:
        text: Raw generator output.

    Returns:
        The parsed object.

    Raises:
        MalformedOutput: If no JSON object can be parsed.

    Example:
        >>> extract_json_object('Sure! {"needs_cards": false}')
        {'needs_cards': False}
    """
    candidates = [text.strip()]
    json_start = text.find("{")
    json_end = text.rfind("}") + 1
    if 0 <= json_start < json_end:
        candidates.append(text[json_start:json_end])

    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(parsed, dict):
            return parsed

    raise MalformedOutput(
        f"Generator output is not a JSON object: {text[:200]!r}", raw_text=text
    )


def recent_history(
    history: Sequence[ConversationTurn] | None,
    window: int,
) -> list[dict[str, str]]:
    """Convert the last ``window`` turns to generator messages.

    Args:
        history: Conversation turns, oldest first.
        window: Maximum number of turns to keep.

    Returns:
        List of ``{"role", "content"}`` dicts.
    """
    if not history or window <= 0:
        return []
    return [{"role": turn.role, "content": turn.content} for turn in history[-window:]]
