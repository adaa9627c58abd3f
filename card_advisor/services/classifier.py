"""Query classification cascade.

Decides, per user turn, how a query is handled. Matchers run in strict
priority order; each returns a ClassificationDecision or None to defer to
the next one:

1. About previous cards: regex short-circuit, then a generator check
2. Specific card: generator extraction plus fuzzy name resolution
3. Needs cards: definition regexes and a keyword allowlist, then a
   generator check that defaults to retrieval
4. Default: needs cards

Cheap deterministic checks always run before generator calls, and every
heuristic short-circuit skips the generator entirely. Classification never
raises on generator failure; each matcher falls back to its safer branch.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import ConversationTurn, Recommendation
from card_advisor.models.pipeline_models import ClassificationDecision
from card_advisor.services.card_resolver import CardResolver
from card_advisor.services.errors import (
    DataUnavailable,
    EmbeddingError,
    GenerationError,
    MalformedOutput,
)
from card_advisor.services.generation import TextGenerator
from card_advisor.services.llm_config import PipelineConfig
from card_advisor.services.prompts import (
    NEEDS_CARDS_PROMPT,
    PREVIOUS_CARDS_PROMPT,
    SPECIFIC_CARD_PROMPT,
    build_messages,
)
from card_advisor.services.utils import (
    compile_patterns,
    contains_any_phrase,
    extract_json_object,
    matched_phrases,
    matches_any_pattern,
    recent_history,
)

logger = get_logger(__name__)

CLASSIFIER_TEMPERATURE = 0.1
CLASSIFIER_MAX_TOKENS = 100


# =============================================================================
# Heuristic Patterns
# =============================================================================

PREVIOUS_CARD_PATTERNS = compile_patterns(
    [
        r"\bthese cards\b",
        r"\bany of these\b",
        r"\bthese recommendations\b",
        r"\bthe cards above\b",
        r"\bthe cards you showed\b",
        r"\bthe cards you recommended\b",
        r"\bwhich of these\b",
        r"\bdo these cards\b",
        r"\bdo any of these\b",
        r"\bare these cards\b",
        r"\bthe recommended cards\b",
        r"\bthe cards you mentioned\b",
    ]
)

# Queries with these words want several cards, never one named card
RECOMMENDATION_INTENT_KEYWORDS = [
    "best",
    "recommend",
    "suggest",
    "show me",
    "give me",
    "which",
    "what card",
    "find",
    "looking for",
    "need",
    "want",
    "help me find",
]

# Questions about a term or property of a card, not requests to see it
INFORMATION_PATTERNS = compile_patterns(
    [
        r"what is the\s+.*\s+of\s+",
        r"what's the\s+.*\s+of\s+",
        r"what is\s+.*\s+for\s+",
        r"how does\s+.*\s+work",
        r"what does\s+.*\s+mean",
    ]
)

DEFINITION_PATTERNS = compile_patterns(
    [
        r"^what is\b",
        r"^what's\b",
        r"^what are\b",
        r"^how do\b",
        r"^how does\b",
        r"^how can\b",
        r"^explain\b",
        r"^can you explain\b",
        r"^tell me about\b",
        r"^what does\b",
        r"^what's the difference between\b",
        r"^difference between\b",
        r"^compare\b",
    ]
)

# Words that turn a definition-shaped question into a recommendation request
RECOMMENDATION_SEEKING_WORDS = [
    "best",
    "recommend",
    "suggest",
    "should i",
    "which",
    "what card",
    "card for",
]

NEEDS_CARDS_KEYWORDS = [
    "best",
    "recommend",
    "suggest",
    "card for",
    "looking for",
    "need",
    "want",
    "which card",
    "what card",
    "find",
    "show me",
    "give me",
    "help me find",
    "travel",
    "groceries",
    "gas",
    "cash back",
    "points",
    "rewards",
    "annual fee",
    "starter",
    "good credit",
    "bad credit",
    "student",
    "business",
]


def is_definition_question(query: str) -> bool:
    """Check whether a query asks for a definition or an explanation.

    Questions that also ask for a recommendation (``What is the best
    travel card?``) are not definition questions.

    Example:
        >>> is_definition_question("What is an annual fee?")
        True
        >>> is_definition_question("What is the best card for travel?")
        False
    """
    normalized = query.strip().lower()
    if contains_any_phrase(normalized, RECOMMENDATION_SEEKING_WORDS):
        return False
    return matches_any_pattern(normalized, DEFINITION_PATTERNS) or matches_any_pattern(
        normalized, INFORMATION_PATTERNS
    )


def skips_specific_card_check(query: str) -> bool:
    """Whether a query can be ruled out as a single-card request without a call."""
    return contains_any_phrase(query, RECOMMENDATION_INTENT_KEYWORDS) or matches_any_pattern(
        query, INFORMATION_PATTERNS
    )


# =============================================================================
# Classifier
# =============================================================================

Matcher = Callable[
    [str, Sequence[ConversationTurn], Sequence[Recommendation]],
    ClassificationDecision | None,
]


class QueryClassifier:
    """Decides the handling mode of each query.

    Attributes:
        generator: Text-generation service for the undecided remainder.
        resolver: Resolves extracted card names to stored cards.
        config: Pipeline configuration (history window).
    """

    def __init__(
        self,
        generator: TextGenerator,
        resolver: CardResolver,
        config: PipelineConfig | None = None,
    ) -> None:
        self.generator = generator
        self.resolver = resolver
        self.config = config or PipelineConfig()
        self.matchers: list[Matcher] = [
            self._match_previous_cards,
            self._match_specific_card,
            self._match_needs_cards,
        ]

    def classify(
        self,
        query: str,
        history: Sequence[ConversationTurn] = (),
        previous_recommendations: Sequence[Recommendation] = (),
    ) -> ClassificationDecision:
        """Run the matcher cascade and return the first decision.

        Args:
            query: The user's question.
            history: Prior conversation turns, oldest first.
            previous_recommendations: Cards shown in the previous answer.

        Returns:
            The routing decision. Falls back to needs-cards when no matcher
            commits.
        """
        for matcher in self.matchers:
            decision = matcher(query, history, previous_recommendations)
            if decision is not None:
                logger.info(
                    f"Query classified as {decision.kind.value}",
                    extra={
                        "extra_data": {
                            "kind": decision.kind.value,
                            "reasoning": decision.reasoning,
                            "card_name": decision.card_name,
                        }
                    },
                )
                return decision

        decision = ClassificationDecision.needs_cards("default")
        logger.info(
            "Query classified as needs_cards by default",
            extra={"extra_data": {"kind": decision.kind.value}},
        )
        return decision

    def _ask(
        self,
        system_prompt: str,
        user_content: str,
        history: Sequence[ConversationTurn],
    ) -> dict:
        """Run one structured classification call and parse its JSON."""
        messages = build_messages(
            system_prompt,
            user_content,
            recent_history(history, self.config.classifier_history_window),
        )
        text = self.generator.complete(
            messages,
            structured=True,
            temperature=CLASSIFIER_TEMPERATURE,
            max_tokens=CLASSIFIER_MAX_TOKENS,
        )
        return extract_json_object(text)

    # -------------------------------------------------------------------------
    # Matchers
    # -------------------------------------------------------------------------

    def _match_previous_cards(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        previous_recommendations: Sequence[Recommendation],
    ) -> ClassificationDecision | None:
        if not previous_recommendations:
            return None

        if matches_any_pattern(query, PREVIOUS_CARD_PATTERNS):
            return ClassificationDecision.about_previous_cards("previous-cards pattern")

        names = "\n".join(f"- {rec.credit_card_name}" for rec in previous_recommendations)
        user_content = f"Previously shown cards:\n{names}\n\nUser question: {query}"
        try:
            answer = self._ask(PREVIOUS_CARDS_PROMPT, user_content, history)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "Previous-cards check failed, deferring",
                extra={"extra_data": {"error": str(e)}},
            )
            return None

        if answer.get("is_about_previous_cards") is True:
            return ClassificationDecision.about_previous_cards("previous-cards check")
        return None

    def _match_specific_card(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        previous_recommendations: Sequence[Recommendation],
    ) -> ClassificationDecision | None:
        if skips_specific_card_check(query):
            return None

        try:
            answer = self._ask(SPECIFIC_CARD_PROMPT, query, history)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "Specific-card check failed, deferring",
                extra={"extra_data": {"error": str(e)}},
            )
            return None

        card_name = answer.get("card_name")
        if answer.get("is_specific_card") is not True:
            return None
        if not isinstance(card_name, str) or not card_name.strip():
            return None

        try:
            card = self.resolver.resolve(card_name.strip())
        except (DataUnavailable, EmbeddingError) as e:
            logger.warning(
                "Card data unavailable for specific-card resolution, deferring",
                extra={"extra_data": {"card_name": card_name, "error": str(e)}},
            )
            return None

        if card is None:
            return None
        return ClassificationDecision.specific_card(card_name.strip(), card, "specific-card check")

    def _match_needs_cards(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        previous_recommendations: Sequence[Recommendation],
    ) -> ClassificationDecision | None:
        if is_definition_question(query):
            return ClassificationDecision.general_answer("definition pattern")

        keywords = matched_phrases(query, NEEDS_CARDS_KEYWORDS)
        if keywords:
            return ClassificationDecision.needs_cards(
                f"needs-cards keyword: {', '.join(keywords)}"
            )

        try:
            answer = self._ask(NEEDS_CARDS_PROMPT, query, history)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "Needs-cards check failed, defaulting to retrieval",
                extra={"extra_data": {"error": str(e)}},
            )
            return ClassificationDecision.needs_cards("needs-cards check failed")

        if answer.get("needs_cards") is False:
            return ClassificationDecision.general_answer("needs-cards check")
        return ClassificationDecision.needs_cards("needs-cards check")
