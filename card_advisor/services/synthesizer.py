"""Recommendation synthesis.

Turns a classified query into a RecommendationResponse. The generator's
structured output is never trusted as-is: card names are validated against
the candidate pool, every structured field is copied from the matching card
record, and each path has a deterministic fallback that does not depend on
the generator succeeding.

Synthesis failures never raise. A failed or malformed generator call yields
a degraded response the caller can still render.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import (
    ENRICHMENT_FIELD_ALIASES,
    CardEmbedding,
    CardRecord,
    ConversationTurn,
    Recommendation,
    detail_lines,
    field_text,
    humanize_field,
    resolve_field,
)
from card_advisor.models.pipeline_models import DecisionKind, RecommendationResponse
from card_advisor.services.auxiliary import DEFAULT_TITLE, generate_title
from card_advisor.services.card_resolver import strip_trademarks
from card_advisor.services.embedding_store import (
    EmbeddingStore,
    EmbeddingStoreProvider,
    StoreHandle,
)
from card_advisor.services.errors import (
    DataUnavailable,
    EmbeddingError,
    GenerationError,
    MalformedOutput,
)
from card_advisor.services.generation import TextGenerator
from card_advisor.services.llm_config import PipelineConfig
from card_advisor.services.prompts import (
    GENERAL_ANSWER_PROMPT,
    PREVIOUS_CARDS_ANSWER_PROMPT,
    PREVIOUS_CARDS_USER_PROMPT,
    RECOMMENDATION_SYSTEM_PROMPT,
    RECOMMENDATION_USER_PROMPT,
    SPECIFIC_CARD_ANSWER_PROMPT,
    SPECIFIC_CARD_USER_PROMPT,
    build_messages,
    format_candidates,
)
from card_advisor.services.summary_repair import card_link, finalize_summary, repair_summary
from card_advisor.services.utils import extract_json_object, recent_history

logger = get_logger(__name__)

SYNTHESIS_TEMPERATURE = 0.3
RECOMMENDATION_MAX_TOKENS = 800
DETAIL_MAX_TOKENS = 800
PREVIOUS_CARDS_MAX_TOKENS = 600
GENERAL_ANSWER_MAX_TOKENS = 400

NO_MATCH_SUMMARY = (
    "I couldn't find any credit cards that match your specific needs. "
    "Try describing what you're looking for differently, for example the rewards, "
    "fees or credit level you have in mind."
)
RECOMMENDATION_FAILURE_SUMMARY = (
    "I'm sorry, I couldn't put together recommendations right now. "
    "Please try rephrasing your question or ask again in a moment."
)
PREVIOUS_CARDS_FAILURE_SUMMARY = (
    "I'm sorry, I couldn't answer that about the cards shown earlier. "
    "Please try asking again in a moment."
)
GENERAL_FALLBACK_SUMMARY = (
    "I'm here to help with credit card questions. Ask me about rewards, fees, "
    "credit scores or how cards work, or tell me what you need and I'll "
    "suggest some cards."
)


def card_match_key(name: str) -> str:
    """Key used to match generator-written names against candidate names."""
    return strip_trademarks(name).strip().lower()


def fallback_reason(record: CardRecord) -> str:
    """Generic reason for a recommendation the generator did not explain.

    Example:
        >>> fallback_reason({"rewards_rate": "2x miles"})
        'This card matches your criteria based on 2x miles.'
    """
    rewards = resolve_field(record, "rewards_rate") or "its features"
    return f"This card matches your criteria based on {rewards}."


def describe_record(record: CardRecord, name: str, url: str) -> str:
    """Deterministic markdown description of one card."""
    lines = [f"Here's what I know about **{card_link(name, url)}**:", ""]
    for field in ENRICHMENT_FIELD_ALIASES:
        value = resolve_field(record, field)
        if value:
            lines.append(f"- **{humanize_field(field)}:** {value}")
    for field in ("summary", "highlights"):
        value = field_text(record, field)
        if value:
            lines.append(f"- **{humanize_field(field)}:** {value}")
    return "\n".join(lines).strip()


def recommendation_lines(rec: Recommendation) -> list[str]:
    """Describe a previously shown recommendation from its own fields."""
    lines = [
        f"Card Name: {rec.credit_card_name}",
        f"Application URL: {rec.apply_url}",
    ]
    for field in ENRICHMENT_FIELD_ALIASES:
        value = getattr(rec, field)
        if value:
            lines.append(f"{field}: {value}")
    if rec.reason:
        lines.append(f"reason: {rec.reason}")
    return lines


class RecommendationSynthesizer:
    """Produces the response for each handling mode.

    Attributes:
        generator: Text-generation service.
        provider: Embedding store provider, used to look up full records.
        config: Pipeline configuration.
    """

    def __init__(
        self,
        generator: TextGenerator,
        provider: EmbeddingStoreProvider | StoreHandle,
        config: PipelineConfig | None = None,
    ) -> None:
        self.generator = generator
        self.provider = provider
        self.config = config or PipelineConfig()

    # -------------------------------------------------------------------------
    # Generator calls
    # -------------------------------------------------------------------------

    def _complete_structured(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> tuple[str, dict[str, Any]]:
        """Run one structured call and parse it.

        Raises:
            GenerationError: If the call fails.
            MalformedOutput: If the text is not a JSON object.
        """
        text = self.generator.complete(
            messages,
            structured=True,
            temperature=SYNTHESIS_TEMPERATURE,
            max_tokens=max_tokens,
        )
        return text, extract_json_object(text)

    # -------------------------------------------------------------------------
    # General path
    # -------------------------------------------------------------------------

    def recommend(
        self,
        query: str,
        candidates: Sequence[CardEmbedding],
        history: Sequence[ConversationTurn] = (),
    ) -> RecommendationResponse:
        """Recommend cards from the retrieved candidates.

        Args:
            query: The user's question.
            candidates: Retrieved cards, most similar first.
            history: Prior conversation turns, oldest first.

        Returns:
            Response with up to ``recommendation_count`` enriched
            recommendations and a summary that lists them.
        """
        mode = DecisionKind.NEEDS_CARDS
        if not candidates:
            logger.info("No candidate cards retrieved")
            return RecommendationResponse(
                summary=NO_MATCH_SUMMARY,
                title=generate_title(self.generator, query),
                metadata={"mode": mode.value, "degraded": False, "candidate_count": 0},
            )

        count = min(self.config.recommendation_count, len(candidates))
        messages = build_messages(
            RECOMMENDATION_SYSTEM_PROMPT.format(count=count),
            RECOMMENDATION_USER_PROMPT.format(
                query=query,
                candidates=format_candidates(candidates),
                count=count,
            ),
            recent_history(history, self.config.history_window),
        )

        try:
            raw_text, answer = self._complete_structured(messages, RECOMMENDATION_MAX_TOKENS)
            entries = answer.get("cards")
            if not isinstance(entries, list):
                raise MalformedOutput(
                    "Recommendation output has no 'cards' list", raw_text=raw_text
                )
        except GenerationError as e:
            logger.error(
                "Recommendation generation failed",
                extra={"extra_data": {"error": str(e), "candidate_count": len(candidates)}},
            )
            return self._degraded(RECOMMENDATION_FAILURE_SUMMARY, mode, error=str(e))
        except MalformedOutput as e:
            logger.warning(
                "Recommendation output malformed",
                extra={"extra_data": {"error": str(e), "candidate_count": len(candidates)}},
            )
            return self._degraded(
                RECOMMENDATION_FAILURE_SUMMARY,
                mode,
                raw_model_answer=getattr(e, "raw_text", ""),
                error=str(e),
            )

        recommendations, used_fallback = self._select_recommendations(
            entries, candidates, count
        )
        summary = answer.get("summary") if isinstance(answer.get("summary"), str) else ""
        summary = finalize_summary(summary, recommendations, self.config.recommendation_count)

        logger.info(
            "Recommendations synthesized",
            extra={
                "extra_data": {
                    "recommendations": [rec.credit_card_name for rec in recommendations],
                    "candidate_count": len(candidates),
                    "used_fallback": used_fallback,
                }
            },
        )
        return RecommendationResponse(
            recommendations=recommendations,
            summary=summary,
            title=generate_title(self.generator, query),
            raw_model_answer=raw_text,
            metadata={
                "mode": mode.value,
                "degraded": False,
                "candidate_count": len(candidates),
                "used_fallback": used_fallback,
            },
        )

    def _select_recommendations(
        self,
        entries: list[Any],
        candidates: Sequence[CardEmbedding],
        count: int,
    ) -> tuple[list[Recommendation], bool]:
        """Validate generator entries and apply the fallback ladder.

        Returns:
            Tuple of (exactly ``count`` recommendations, whether any
            candidate was added by the fallback ladder).
        """
        by_key: dict[str, CardEmbedding] = {}
        for candidate in candidates:
            by_key.setdefault(card_match_key(candidate.name), candidate)

        chosen: list[Recommendation] = []
        used_keys: set[str] = set()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = entry.get("credit_card_name")
            reason = entry.get("reason")
            if not isinstance(name, str) or not name.strip():
                continue
            if not isinstance(reason, str) or not reason.strip():
                continue

            key = card_match_key(name)
            candidate = by_key.get(key)
            if candidate is None:
                logger.warning(
                    "Dropping recommendation not in candidate pool",
                    extra={"extra_data": {"card_name": name}},
                )
                continue
            if key in used_keys:
                continue

            used_keys.add(key)
            chosen.append(Recommendation.from_record(candidate.record, reason.strip()))

        used_fallback = len(chosen) < count
        for candidate in candidates:
            if len(chosen) >= count:
                break
            key = card_match_key(candidate.name)
            if key in used_keys:
                continue
            used_keys.add(key)
            chosen.append(
                Recommendation.from_record(candidate.record, fallback_reason(candidate.record))
            )

        return chosen[:count], used_fallback

    # -------------------------------------------------------------------------
    # Scoped paths
    # -------------------------------------------------------------------------

    def _store_or_none(self) -> EmbeddingStore | None:
        try:
            return self.provider.load()
        except (DataUnavailable, EmbeddingError) as e:
            logger.warning(
                "Card data unavailable, describing previous cards from their own fields",
                extra={"extra_data": {"error": str(e)}},
            )
            return None

    def answer_about_previous(
        self,
        query: str,
        previous: Sequence[Recommendation],
        history: Sequence[ConversationTurn] = (),
    ) -> RecommendationResponse:
        """Answer a question using only the previously shown cards.

        Args:
            query: The user's question.
            previous: Cards shown in the previous answer.
            history: Prior conversation turns, oldest first.

        Returns:
            Response with no recommendations and an answer that references
            only the previous cards.
        """
        mode = DecisionKind.ABOUT_PREVIOUS_CARDS
        store = self._store_or_none() if previous else None
        blocks = []
        for rec in previous:
            found = store.find_by_name(rec.credit_card_name) if store is not None else None
            lines = detail_lines(found.record) if found is not None else recommendation_lines(rec)
            blocks.append("\n".join(lines))

        messages = build_messages(
            PREVIOUS_CARDS_ANSWER_PROMPT,
            PREVIOUS_CARDS_USER_PROMPT.format(query=query, cards="\n\n".join(blocks)),
            recent_history(history, self.config.classifier_history_window),
        )
        try:
            raw_text, answer = self._complete_structured(messages, PREVIOUS_CARDS_MAX_TOKENS)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "Previous-cards answer failed",
                extra={"extra_data": {"error": str(e), "previous_count": len(previous)}},
            )
            return self._degraded(
                PREVIOUS_CARDS_FAILURE_SUMMARY,
                mode,
                raw_model_answer=getattr(e, "raw_text", ""),
                error=str(e),
            )

        summary = answer.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            return self._degraded(
                PREVIOUS_CARDS_FAILURE_SUMMARY,
                mode,
                raw_model_answer=raw_text,
                error="Previous-cards output has no summary",
            )

        return RecommendationResponse(
            summary=repair_summary(summary.strip(), previous),
            title=generate_title(self.generator, query),
            raw_model_answer=raw_text,
            metadata={
                "mode": mode.value,
                "degraded": False,
                "previous_count": len(previous),
            },
        )

    def describe_card(
        self,
        card: CardEmbedding,
        query: str,
        history: Sequence[ConversationTurn] = (),
    ) -> RecommendationResponse:
        """Describe one resolved card in detail.

        The response always carries exactly one recommendation built from
        the card record. When generation fails, the summary is built from
        the record instead and the response is flagged as degraded.

        Args:
            card: The resolved card.
            query: The user's question.
            history: Prior conversation turns, oldest first.

        Returns:
            Response with one enriched recommendation.
        """
        mode = DecisionKind.SPECIFIC_CARD
        messages = build_messages(
            SPECIFIC_CARD_ANSWER_PROMPT,
            SPECIFIC_CARD_USER_PROMPT.format(query=query, card="\n".join(detail_lines(card.record))),
            recent_history(history, self.config.classifier_history_window),
        )
        fallback_summary = describe_record(card.record, card.name, card.apply_url)

        try:
            raw_text, answer = self._complete_structured(messages, DETAIL_MAX_TOKENS)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "Card detail generation failed, describing card from its record",
                extra={"extra_data": {"card_name": card.name, "error": str(e)}},
            )
            return self._degraded(
                fallback_summary,
                mode,
                raw_model_answer=getattr(e, "raw_text", ""),
                recommendations=[Recommendation.from_record(card.record, fallback_summary)],
                error=str(e),
            )

        summary = answer.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = fallback_summary
        recommendation = Recommendation.from_record(card.record, "")
        summary = repair_summary(summary.strip(), [recommendation])
        recommendation = recommendation.model_copy(update={"reason": summary})

        return RecommendationResponse(
            recommendations=[recommendation],
            summary=summary,
            title=generate_title(self.generator, query),
            raw_model_answer=raw_text,
            metadata={"mode": mode.value, "degraded": False, "card_name": card.name},
        )

    def general_answer(
        self,
        query: str,
        history: Sequence[ConversationTurn] = (),
    ) -> RecommendationResponse:
        """Answer from general knowledge, without card lookup.

        Returns:
            Response with no recommendations.
        """
        mode = DecisionKind.GENERAL_ANSWER
        messages = build_messages(
            GENERAL_ANSWER_PROMPT,
            query,
            recent_history(history, self.config.history_window),
        )
        try:
            raw_text, answer = self._complete_structured(messages, GENERAL_ANSWER_MAX_TOKENS)
        except (GenerationError, MalformedOutput) as e:
            logger.warning(
                "General answer generation failed",
                extra={"extra_data": {"error": str(e)}},
            )
            return self._degraded(
                GENERAL_FALLBACK_SUMMARY,
                mode,
                raw_model_answer=getattr(e, "raw_text", ""),
                error=str(e),
            )

        summary = answer.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = GENERAL_FALLBACK_SUMMARY

        return RecommendationResponse(
            summary=summary.strip(),
            title=generate_title(self.generator, query),
            raw_model_answer=raw_text,
            metadata={"mode": mode.value, "degraded": False},
        )

    def _degraded(
        self,
        summary: str,
        mode: DecisionKind,
        raw_model_answer: str = "",
        recommendations: list[Recommendation] | None = None,
        error: str | None = None,
    ) -> RecommendationResponse:
        return RecommendationResponse.degraded_response(
            summary=summary,
            mode=mode,
            title=DEFAULT_TITLE,
            raw_model_answer=raw_model_answer,
            recommendations=recommendations,
            error=error,
        )
