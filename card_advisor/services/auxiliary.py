"""Title and follow-up suggestion generators.

Both are cosmetic: any failure is logged and replaced by a fixed fallback,
never raised to the caller.
"""

from __future__ import annotations

from collections.abc import Sequence

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import ConversationTurn
from card_advisor.services.errors import GenerationError, MalformedOutput
from card_advisor.services.generation import TextGenerator
from card_advisor.services.prompts import SUGGESTIONS_PROMPT, TITLE_PROMPT, build_messages
from card_advisor.services.utils import extract_json_object, recent_history

logger = get_logger(__name__)

DEFAULT_TITLE = "AI Recommendations"
MIN_TITLE_WORDS = 2
MAX_TITLE_WORDS = 5
TITLE_MAX_TOKENS = 20

FALLBACK_SUGGESTIONS = [
    "What cards offer the best rewards?",
    "Show me cards with no annual fee",
]
MIN_SUGGESTIONS = 2
MAX_SUGGESTIONS = 4
SUGGESTIONS_HISTORY_WINDOW = 4
SUGGESTIONS_TEMPERATURE = 0.7
SUGGESTIONS_MAX_TOKENS = 200

QUOTE_CHARS = "\"'“”‘’`"


def clean_title(text: str) -> str:
    """Trim quotes and whitespace and keep at most five words.

    Titles shorter than two words come back empty.

    Example:
        >>> clean_title('"Best Travel Rewards Cards For Frequent Flyers"')
        'Best Travel Rewards Cards For'
    """
    title = text.strip().strip(QUOTE_CHARS).strip()
    words = title.split()
    if len(words) < MIN_TITLE_WORDS:
        return ""
    return " ".join(words[:MAX_TITLE_WORDS])


def generate_title(generator: TextGenerator, query: str) -> str:
    """Generate a short title describing the user's question.

    Args:
        generator: Text-generation service.
        query: The user's question.

    Returns:
        A title of two to five words, or ``AI Recommendations`` when the
        call fails or returns nothing usable.
    """
    try:
        text = generator.complete(
            build_messages(TITLE_PROMPT, query),
            max_tokens=TITLE_MAX_TOKENS,
        )
    except GenerationError as e:
        logger.warning(
            "Title generation failed, using default title",
            extra={"extra_data": {"error": str(e)}},
        )
        return DEFAULT_TITLE

    return clean_title(text) or DEFAULT_TITLE


def generate_suggestions(
    generator: TextGenerator,
    question: str,
    history: Sequence[ConversationTurn] = (),
) -> list[str]:
    """Generate follow-up questions the user is likely to ask next.

    Args:
        generator: Text-generation service.
        question: The user's latest question.
        history: Prior conversation turns, oldest first.

    Returns:
        Two to four suggestions, or the fixed fallback pair on any failure.
    """
    messages = build_messages(
        SUGGESTIONS_PROMPT,
        f"User's question: {question}",
        recent_history(history, SUGGESTIONS_HISTORY_WINDOW),
    )
    try:
        answer = extract_json_object(
            generator.complete(
                messages,
                structured=True,
                temperature=SUGGESTIONS_TEMPERATURE,
                max_tokens=SUGGESTIONS_MAX_TOKENS,
            )
        )
    except (GenerationError, MalformedOutput) as e:
        logger.warning(
            "Suggestion generation failed, using fallback suggestions",
            extra={"extra_data": {"error": str(e)}},
        )
        return list(FALLBACK_SUGGESTIONS)

    raw = answer.get("suggestions")
    if not isinstance(raw, list):
        raw = []
    suggestions = [item.strip() for item in raw if isinstance(item, str) and item.strip()]

    if len(suggestions) < MIN_SUGGESTIONS:
        logger.info(
            "Too few usable suggestions, using fallback suggestions",
            extra={"extra_data": {"usable": len(suggestions)}},
        )
        return list(FALLBACK_SUGGESTIONS)

    return suggestions[:MAX_SUGGESTIONS]
