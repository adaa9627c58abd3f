"""Fuzzy resolution of a free-text card name to a stored card.

Card names share long issuer prefixes and differ in punctuation and
registered-mark glyphs, so names are normalized before comparison and
scored with a containment bonus and word-set overlap.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import CardEmbedding

logger = get_logger(__name__)

TRADEMARK_GLYPHS = re.compile(r"[®™©]")
NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.8
MATCH_THRESHOLD = 0.5
MIN_WORD_LENGTH = 3


def strip_trademarks(name: str) -> str:
    return TRADEMARK_GLYPHS.sub("", name)


def normalize_card_name(name: str) -> str:
    """Normalize a card name for comparison.

    Example:
        >>> normalize_card_name("Chase Sapphire Preferred® Card")
        'chase sapphire preferred card'
    """
    lowered = strip_trademarks(name.lower())
    return NON_ALNUM_RUN.sub(" ", lowered).strip()


def name_similarity(first: str, second: str) -> float:
    """Score how closely two card names match, from 0.0 to 1.0.

    Both names are normalized first. Exact equality scores 1.0, one name
    containing the other scores 0.8, anything else scores the Jaccard
    overlap of their words longer than two characters.

    Example:
        >>> name_similarity("chase sapphire preferred", "Chase Sapphire Preferred®")
        1.0
        >>> name_similarity("Sapphire Preferred", "Chase Sapphire Preferred")
        0.8
    """
    normalized_first = normalize_card_name(first)
    normalized_second = normalize_card_name(second)

    if normalized_first == normalized_second:
        return EXACT_SCORE

    if normalized_first and normalized_second and (
        normalized_first in normalized_second or normalized_second in normalized_first
    ):
        return CONTAINMENT_SCORE

    words_first = {w for w in normalized_first.split() if len(w) >= MIN_WORD_LENGTH}
    words_second = {w for w in normalized_second.split() if len(w) >= MIN_WORD_LENGTH}
    if not words_first or not words_second:
        return 0.0

    return len(words_first & words_second) / len(words_first | words_second)


class CardResolver:
    """Resolves card names against the cards of an embedding store.

    Attributes:
        cards_provider: Callable returning the current list of stored cards.
            Called on every resolution so the resolver never holds a stale
            copy of the store.
        threshold: Minimum score for a match to be accepted.
    """

    def __init__(
        self,
        cards_provider: Callable[[], list[CardEmbedding]],
        threshold: float = MATCH_THRESHOLD,
    ) -> None:
        self.cards_provider = cards_provider
        self.threshold = threshold

    def resolve_scored(self, name: str) -> tuple[CardEmbedding | None, float]:
        """Find the best-scoring card for a name.

        Args:
            name: Free-text card name.

        Returns:
            Tuple of (card or None, best score). The card is None when the
            best score is below the threshold.
        """
        best_match: CardEmbedding | None = None
        best_score = 0.0

        for card in self.cards_provider():
            score = name_similarity(name, card.name)
            if score > best_score:
                best_score = score
                best_match = card

        if best_match is not None and best_score >= self.threshold:
            logger.info(
                f"Resolved card name: {best_match.name}",
                extra={"extra_data": {"query_name": name, "score": round(best_score, 3)}},
            )
            return best_match, best_score

        logger.info(
            "No card matched name",
            extra={"extra_data": {"query_name": name, "best_score": round(best_score, 3)}},
        )
        return None, best_score

    def resolve(self, name: str) -> CardEmbedding | None:
        """Find the card a name refers to, or None below the threshold."""
        card, _score = self.resolve_scored(name)
        return card
