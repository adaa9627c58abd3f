"""Pydantic models for the card advisor."""

from card_advisor.models.card_models import (
    CardEmbedding,
    CardRecord,
    ConversationTurn,
    Recommendation,
)
from card_advisor.models.pipeline_models import (
    ClassificationDecision,
    DecisionKind,
    RecommendationRequest,
    RecommendationResponse,
)

__all__ = [
    # Card models
    "CardEmbedding",
    "CardRecord",
    "ConversationTurn",
    "Recommendation",
    # Pipeline models
    "ClassificationDecision",
    "DecisionKind",
    "RecommendationRequest",
    "RecommendationResponse",
]
