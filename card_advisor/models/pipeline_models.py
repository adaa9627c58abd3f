"""Pydantic request, response and routing models for the pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from card_advisor.models.card_models import CardEmbedding, ConversationTurn, Recommendation


class DecisionKind(str, Enum):
    """How a query is handled."""

    NEEDS_CARDS = "needs_cards"
    GENERAL_ANSWER = "general_answer"
    SPECIFIC_CARD = "specific_card"
    ABOUT_PREVIOUS_CARDS = "about_previous_cards"


class ClassificationDecision(BaseModel):
    """Routing decision for a single query.

    Attributes:
        kind: Which handling mode the query gets.
        card_name: Card name extracted for specific-card queries.
        card: The resolved card for specific-card queries.
        reasoning: Which cascade step decided, for logs and metadata.
    """

    kind: DecisionKind = Field(description="Handling mode")
    card_name: str | None = Field(default=None, description="Extracted card name")
    card: CardEmbedding | None = Field(default=None, description="Resolved card")
    reasoning: str = Field(default="", description="Which step decided")

    @classmethod
    def needs_cards(cls, reasoning: str) -> ClassificationDecision:
        return cls(kind=DecisionKind.NEEDS_CARDS, reasoning=reasoning)

    @classmethod
    def general_answer(cls, reasoning: str) -> ClassificationDecision:
        return cls(kind=DecisionKind.GENERAL_ANSWER, reasoning=reasoning)

    @classmethod
    def about_previous_cards(cls, reasoning: str) -> ClassificationDecision:
        return cls(kind=DecisionKind.ABOUT_PREVIOUS_CARDS, reasoning=reasoning)

    @classmethod
    def specific_card(
        cls, card_name: str, card: CardEmbedding, reasoning: str
    ) -> ClassificationDecision:
        return cls(
            kind=DecisionKind.SPECIFIC_CARD,
            card_name=card_name,
            card=card,
            reasoning=reasoning,
        )


class RecommendationRequest(BaseModel):
    """Input schema for one pipeline invocation.

    Attributes:
        message: The user's question.
        conversation_history: Prior turns, oldest first.
        previous_recommendations: Cards shown in the previous answer, if any.
    """

    message: str = Field(min_length=1, description="The user's question")
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list, description="Prior conversation turns"
    )
    previous_recommendations: list[Recommendation] = Field(
        default_factory=list, description="Previously shown recommendations"
    )


class RecommendationResponse(BaseModel):
    """Output schema for one pipeline invocation.

    Attributes:
        recommendations: Zero to three recommended cards.
        summary: Markdown answer text, possibly with card links.
        title: Short title describing the answer.
        raw_model_answer: Unparsed generator text, for diagnostics.
        metadata: Mode, degradation flag and routing details.
    """

    recommendations: list[Recommendation] = Field(
        default_factory=list, description="Recommended cards"
    )
    summary: str = Field(default="", description="Markdown answer text")
    title: str = Field(default="", description="Short answer title")
    raw_model_answer: str = Field(default="", description="Unparsed generator output")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Mode, degradation flag and routing details"
    )

    @property
    def degraded(self) -> bool:
        return bool(self.metadata.get("degraded"))

    @classmethod
    def degraded_response(
        cls,
        summary: str,
        mode: DecisionKind,
        title: str,
        raw_model_answer: str = "",
        recommendations: list[Recommendation] | None = None,
        error: str | None = None,
    ) -> RecommendationResponse:
        """Create a renderable response for a failed synthesis stage.

        Args:
            summary: Explanatory text shown to the user.
            mode: The handling mode that failed.
            title: Title to show.
            raw_model_answer: Whatever the generator returned, if anything.
            recommendations: Deterministically built recommendations, if any.
            error: Description of the failure.

        Returns:
            RecommendationResponse flagged as degraded.
        """
        metadata: dict[str, Any] = {"mode": mode.value, "degraded": True}
        if error:
            metadata["error"] = error
        return cls(
            recommendations=recommendations or [],
            summary=summary,
            title=title,
            raw_model_answer=raw_model_answer,
            metadata=metadata,
        )
