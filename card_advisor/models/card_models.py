"""Pydantic models for card records, embeddings and recommendations.

Card records arrive from the card source as plain mappings. The helpers in
this module know the canonical field names, the aliases different sheets use
for the same concept, and how a record is rendered to text for embedding
and prompting.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CardRecord = dict[str, str | int | float]

NAME_FIELD = "credit_card_name"
URL_FIELD = "url_application"
ID_FIELD = "id"

# Recommendation field -> record fields that may carry it, in priority order
ENRICHMENT_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "intro_offer": ("intro_offer", "welcome_bonus", "sign_up_bonus", "intro_bonus"),
    "application_fee": ("application_fee", "app_fee"),
    "credit_score_needed": (
        "credit_score_needed",
        "credit_score",
        "min_credit_score",
        "credit_score_required",
    ),
    "annual_fee": ("annual_fee", "fee"),
    "rewards_rate": ("rewards_rate", "rewards", "reward_rate"),
    "perks": ("perks", "benefits", "card_perks"),
}

# Record fields worth showing the generator when describing a card in detail
DETAIL_FIELDS = [
    "annual_fee",
    "intro_offer",
    "welcome_bonus",
    "sign_up_bonus",
    "intro_bonus",
    "rewards_rate",
    "rewards",
    "reward_rate",
    "credit_score_needed",
    "credit_score",
    "min_credit_score",
    "credit_score_required",
    "target_consumer",
    "points_multipliers",
    "perks",
    "benefits",
    "card_perks",
    "application_fee",
    "app_fee",
    "intro_apr",
    "apr",
    "summary",
    "highlights",
]


def field_text(record: CardRecord, field: str) -> str:
    """Return a record field as trimmed text, or "" when absent."""
    value = record.get(field)
    if value is None:
        return ""
    return str(value).strip()


def record_name(record: CardRecord) -> str:
    return field_text(record, NAME_FIELD)


def record_url(record: CardRecord) -> str:
    return field_text(record, URL_FIELD)


def resolve_field(record: CardRecord, field: str) -> str:
    """Resolve an enrichment field through its aliases.

    Args:
        record: The card record.
        field: A key of ENRICHMENT_FIELD_ALIASES.

    Returns:
        The first non-empty aliased value, or "".
    """
    for alias in ENRICHMENT_FIELD_ALIASES.get(field, (field,)):
        value = field_text(record, alias)
        if value:
            return value
    return ""


def humanize_field(field: str) -> str:
    """Turn ``annual_fee`` into ``Annual fee``."""
    return field.replace("_", " ").strip().capitalize()


def card_to_text(record: CardRecord) -> str:
    """Render a record's descriptive fields as one line of text.

    The name, application URL and id are left out; every other non-empty
    field is rendered as ``Label: value`` in record order.

    Example:
        >>> card_to_text({"credit_card_name": "X", "annual_fee": "$0", "perks": ""})
        'Annual fee: $0'
    """
    parts = []
    for field in record:
        if field in (NAME_FIELD, URL_FIELD, ID_FIELD):
            continue
        value = field_text(record, field)
        if value:
            parts.append(f"{humanize_field(field)}: {value}")
    return "; ".join(parts)


def embedding_text(record: CardRecord) -> str:
    """Canonical text a card's embedding vector is computed from."""
    details = card_to_text(record)
    name = record_name(record)
    return f"{name}. {details}" if details else name


def detail_lines(record: CardRecord) -> list[str]:
    """Lines describing a card for the detail and follow-up prompts."""
    lines = [
        f"Card Name: {record_name(record)}",
        f"Application URL: {record_url(record)}",
    ]
    for field in DETAIL_FIELDS:
        value = field_text(record, field)
        if value:
            lines.append(f"{field}: {value}")
    return lines


class ConversationTurn(BaseModel):
    """One prior message in the caller's conversation."""

    role: Literal["user", "assistant"] = Field(description="Who wrote the message")
    content: str = Field(description="Message text")


class CardEmbedding(BaseModel):
    """A card record paired with its precomputed embedding vector."""

    model_config = ConfigDict(frozen=True)

    record: CardRecord = Field(description="The full card record")
    vector: list[float] = Field(description="Embedding of the record's canonical text")

    @property
    def name(self) -> str:
        return record_name(self.record)

    @property
    def apply_url(self) -> str:
        return record_url(self.record)


class Recommendation(BaseModel):
    """A card recommended for the current query.

    The name, URL and enrichment fields always come from the matching card
    record; only ``reason`` is written by the generator.

    Attributes:
        credit_card_name: Canonical card name.
        apply_url: Application URL from the card record.
        reason: Short explanation of why the card fits.
        intro_offer: Welcome or sign-up offer.
        application_fee: Application fee, if any.
        credit_score_needed: Credit score requirement.
        annual_fee: Annual fee.
        rewards_rate: Rewards earning rate.
        perks: Notable perks and benefits.
    """

    credit_card_name: str = Field(description="Canonical card name")
    apply_url: str = Field(default="", description="Application URL")
    reason: str = Field(default="", description="Why this card fits the query")
    intro_offer: str = Field(default="", description="Welcome or sign-up offer")
    application_fee: str = Field(default="", description="Application fee")
    credit_score_needed: str = Field(default="", description="Credit score requirement")
    annual_fee: str = Field(default="", description="Annual fee")
    rewards_rate: str = Field(default="", description="Rewards earning rate")
    perks: str = Field(default="", description="Perks and benefits")

    @classmethod
    def from_record(cls, record: CardRecord, reason: str) -> Recommendation:
        """Build an enriched recommendation from a card record.

        Args:
            record: The authoritative card record.
            reason: Explanation text for this recommendation.

        Returns:
            Recommendation with every structured field taken from the record.
        """
        return cls(
            credit_card_name=record_name(record),
            apply_url=record_url(record),
            reason=reason,
            **{field: resolve_field(record, field) for field in ENRICHMENT_FIELD_ALIASES},
        )
