"""Shared pytest fixtures.

The fakes here stand in for the two external services: ``FakeGenerator``
answers each prompt kind with a scripted response and records every call,
``FakeEmbedder`` is a deterministic bag-of-words vectorizer over a small
vocabulary. No test touches the network.
"""

import re
from collections.abc import Callable

import pytest

from card_advisor.services.card_source import StaticCardSource
from card_advisor.services.embedding_store import (
    EmbeddingStoreProvider,
    reset_embedding_store_provider,
)
from card_advisor.services.errors import EmbeddingError, GenerationError
from card_advisor.services.llm_config import clear_config_cache
from card_advisor.services.prompts import (
    GENERAL_ANSWER_PROMPT,
    NEEDS_CARDS_PROMPT,
    PREVIOUS_CARDS_ANSWER_PROMPT,
    PREVIOUS_CARDS_PROMPT,
    RECOMMENDATION_SYSTEM_PROMPT,
    SPECIFIC_CARD_ANSWER_PROMPT,
    SPECIFIC_CARD_PROMPT,
    SUGGESTIONS_PROMPT,
    TITLE_PROMPT,
)

CHASE_URL = "https://example.com/apply/chase-sapphire-preferred"
VENTURE_URL = "https://example.com/apply/capital-one-venture"
CITI_URL = "https://example.com/apply/citi-double-cash"
DISCOVER_URL = "https://example.com/apply/discover-it-student"
BLUE_CASH_URL = "https://example.com/apply/amex-blue-cash-preferred"

SAMPLE_CARDS = [
    {
        "id": "1",
        "credit_card_name": "Chase Sapphire Preferred®",
        "url_application": CHASE_URL,
        "annual_fee": "$95",
        "intro_offer": "60,000 bonus points",
        "rewards_rate": "5x on travel, 3x on dining",
        "credit_score_needed": "Good to Excellent",
        "perks": "Trip cancellation insurance",
    },
    {
        "id": "2",
        "credit_card_name": "Capital One Venture Rewards",
        "url_application": VENTURE_URL,
        "annual_fee": "$95",
        "welcome_bonus": "75,000 miles",
        "rewards": "2x miles on every purchase",
        "credit_score": "Excellent",
        "benefits": "Travel credits and lounge access",
    },
    {
        "id": "3",
        "credit_card_name": "Citi Double Cash",
        "url_application": CITI_URL,
        "annual_fee": "$0",
        "rewards_rate": "2% cash back on every purchase",
    },
    {
        "id": "4",
        "credit_card_name": "Discover it Student Cash Back",
        "url_application": DISCOVER_URL,
        "annual_fee": "$0",
        "rewards_rate": "5% cash back in rotating categories",
        "target_consumer": "student",
    },
    {
        "id": "5",
        "credit_card_name": "Blue Cash Preferred from American Express",
        "url_application": BLUE_CASH_URL,
        "annual_fee": "$95",
        "rewards_rate": "6% cash back at U.S. supermarkets",
        "perks": "Cash back on streaming",
    },
]

VOCABULARY = [
    "travel",
    "miles",
    "dining",
    "points",
    "cash",
    "back",
    "student",
    "supermarkets",
    "groceries",
    "fee",
    "business",
    "gas",
]

PROMPT_KINDS = {
    PREVIOUS_CARDS_PROMPT: "previous_check",
    SPECIFIC_CARD_PROMPT: "specific_check",
    NEEDS_CARDS_PROMPT: "needs_check",
    PREVIOUS_CARDS_ANSWER_PROMPT: "previous_answer",
    SPECIFIC_CARD_ANSWER_PROMPT: "card_detail",
    GENERAL_ANSWER_PROMPT: "general_answer",
    TITLE_PROMPT: "title",
    SUGGESTIONS_PROMPT: "suggestions",
}


def prompt_kind(messages: list[dict[str, str]]) -> str:
    """Identify which prompt a generator call was made with."""
    system = messages[0]["content"]
    if system in PROMPT_KINDS:
        return PROMPT_KINDS[system]
    if system.startswith(RECOMMENDATION_SYSTEM_PROMPT[:30]):
        return "recommend"
    return "unknown"


class FakeGenerator:
    """Scripted TextGenerator.

    ``responses`` maps a prompt kind to a response text, an exception to
    raise, a list of those (consumed in order), or a callable taking the
    messages. Unscripted kinds raise GenerationError.
    """

    def __init__(self, responses: dict | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[dict] = []

    def complete(self, messages, structured=False, temperature=None, max_tokens=None):
        kind = prompt_kind(messages)
        self.calls.append(
            {
                "kind": kind,
                "messages": list(messages),
                "structured": structured,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )

        response = self.responses.get(kind)
        if isinstance(response, list):
            response = response.pop(0) if response else None
        if callable(response) and not isinstance(response, Exception):
            response = response(messages)
        if response is None:
            raise GenerationError(f"No scripted response for {kind}")
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def kinds(self) -> list[str]:
        return [call["kind"] for call in self.calls]

    def calls_for(self, kind: str) -> list[dict]:
        return [call for call in self.calls if call["kind"] == kind]


class FakeEmbedder:
    """Deterministic bag-of-words Embedder over VOCABULARY."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.embed_calls: list[str] = []
        self.embed_many_calls: list[list[str]] = []

    @staticmethod
    def vectorize(text: str) -> list[float]:
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(term)) for term in VOCABULARY]

    def embed(self, text):
        self.embed_calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding service down")
        return self.vectorize(text)

    def embed_many(self, texts):
        self.embed_many_calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding service down")
        return [self.vectorize(text) for text in texts]


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset process-wide singletons before and after each test."""
    reset_embedding_store_provider()
    clear_config_cache()
    yield
    reset_embedding_store_provider()
    clear_config_cache()


@pytest.fixture
def sample_cards():
    """Fixture providing the sample card records."""
    return [dict(card) for card in SAMPLE_CARDS]


@pytest.fixture
def card_source(sample_cards):
    """Fixture providing an in-memory card source."""
    return StaticCardSource(sample_cards)


@pytest.fixture
def fake_embedder():
    """Fixture providing a deterministic embedder."""
    return FakeEmbedder()


@pytest.fixture
def provider(card_source, fake_embedder):
    """Fixture providing an embedding store provider over the sample cards."""
    return EmbeddingStoreProvider(card_source, fake_embedder)


@pytest.fixture
def make_generator() -> Callable[..., FakeGenerator]:
    """Fixture providing the scripted generator factory."""
    return FakeGenerator
