"""End-to-end tests for the recommendation pipeline."""

import asyncio
import json
import time

import pytest

from card_advisor.models.card_models import Recommendation
from card_advisor.models.pipeline_models import RecommendationRequest
from card_advisor.services.auxiliary import DEFAULT_TITLE, FALLBACK_SUGGESTIONS
from card_advisor.services.card_source import StaticCardSource
from card_advisor.services.embedding_store import EmbeddingStoreProvider
from card_advisor.services.errors import DataUnavailable, EmbeddingError
from card_advisor.services.llm_config import PipelineConfig
from card_advisor.services.pipeline import (
    TIMEOUT_SUMMARY,
    RecommendationPipeline,
    create_pipeline,
    generate_recommendations,
    suggest_follow_ups,
)
from card_advisor.services.synthesizer import RECOMMENDATION_FAILURE_SUMMARY

TRAVEL_CARDS = [
    "Chase Sapphire Preferred®",
    "Capital One Venture Rewards",
    "Citi Double Cash",
]


def travel_response(by_name):
    summary = "Here are three great cards for travel:\n" + "\n".join(
        f"- **[{name}]({by_name[name]['url_application']})** - A solid pick."
        for name in TRAVEL_CARDS
    )
    return json.dumps(
        {
            "summary": summary,
            "cards": [
                {"credit_card_name": name, "reason": "A solid pick."} for name in TRAVEL_CARDS
            ],
        }
    )


@pytest.fixture
def by_name(sample_cards):
    """Fixture mapping card names to records."""
    return {card["credit_card_name"]: card for card in sample_cards}


@pytest.fixture
def make_pipeline(provider, make_generator):
    """Fixture providing a pipeline factory over the sample cards."""

    def factory(responses=None, card_provider=None, config=None):
        generator = make_generator(responses)
        pipeline = RecommendationPipeline(generator, card_provider or provider, config)
        return pipeline, generator

    return factory


# =============================================================================
# Routing Scenarios
# =============================================================================


class TestScenarios:
    """One user turn through each handling mode."""

    def test_travel_recommendations(self, make_pipeline, by_name):
        """A recommendation request returns three enriched cards named in the summary."""
        pipeline, generator = make_pipeline(
            {"recommend": travel_response(by_name), "title": "Travel Rewards Cards"}
        )

        response = pipeline.process(
            RecommendationRequest(message="What's the best card for travel?")
        )

        assert len(response.recommendations) == 3
        for rec in response.recommendations:
            assert rec.apply_url == by_name[rec.credit_card_name]["url_application"]
            assert rec.credit_card_name in response.summary
        assert response.title == "Travel Rewards Cards"
        assert response.metadata["mode"] == "needs_cards"
        assert response.metadata["reasoning"]
        assert generator.kinds == ["recommend", "title"]

    def test_definition_question(self, make_pipeline, provider):
        """A definition question is answered without loading card data."""
        pipeline, generator = make_pipeline(
            {
                "specific_check": '{"is_specific_card": false, "card_name": null}',
                "general_answer": '{"summary": "An annual fee is a yearly charge for the card."}',
                "title": "Annual Fees Explained",
            }
        )

        response = pipeline.process(RecommendationRequest(message="What is an annual fee?"))

        assert response.recommendations == []
        assert response.summary == "An annual fee is a yearly charge for the card."
        assert response.metadata["mode"] == "general_answer"
        assert provider.is_loaded is False
        assert "recommend" not in generator.kinds

    def test_specific_card(self, make_pipeline, by_name):
        """A named card returns exactly that card."""
        pipeline, generator = make_pipeline(
            {
                "specific_check": json.dumps(
                    {"is_specific_card": True, "card_name": "Chase Sapphire Preferred"}
                ),
                "card_detail": '{"summary": "The Chase Sapphire Preferred® is a travel card."}',
                "title": "Chase Sapphire Preferred",
            }
        )

        response = pipeline.process(
            RecommendationRequest(message="Tell me about the Chase Sapphire Preferred")
        )

        assert len(response.recommendations) == 1
        rec = response.recommendations[0]
        assert rec.credit_card_name == "Chase Sapphire Preferred®"
        assert rec.apply_url == by_name["Chase Sapphire Preferred®"]["url_application"]
        assert response.metadata["mode"] == "specific_card"
        assert generator.kinds == ["specific_check", "card_detail", "title"]

    def test_unparsable_recommendation_output(self, make_pipeline):
        """Unparsable output yields a renderable response with no cards."""
        pipeline, _generator = make_pipeline(
            {"recommend": "Here are some cards I like: Chase, Citi."}
        )

        response = pipeline.process(
            RecommendationRequest(message="What's the best card for travel?")
        )

        assert response.recommendations == []
        assert response.summary == RECOMMENDATION_FAILURE_SUMMARY
        assert response.title == DEFAULT_TITLE
        assert response.degraded is True

    def test_about_previous_cards(self, make_pipeline, sample_cards):
        """A question about previously shown cards is answered from those cards."""
        pipeline, generator = make_pipeline(
            {
                "previous_answer": '{"summary": "The Capital One Venture Rewards has lounge access."}',
                "title": "Lounge Access",
            }
        )
        previous = [
            Recommendation.from_record(sample_cards[0], "Travel."),
            Recommendation.from_record(sample_cards[1], "Miles."),
        ]

        response = pipeline.process(
            RecommendationRequest(
                message="Do any of these cards have lounge access?",
                previous_recommendations=previous,
            )
        )

        assert response.recommendations == []
        assert "lounge access" in response.summary
        assert response.metadata["mode"] == "about_previous_cards"
        assert generator.kinds == ["previous_answer", "title"]


# =============================================================================
# Failure Propagation Tests
# =============================================================================


class TestFailures:
    """Retrieval failures propagate; everything else degrades."""

    def test_embedding_failure_propagates(self, make_pipeline, fake_embedder):
        """An embedding service failure on the retrieval path raises."""
        fake_embedder.fail = True
        pipeline, _generator = make_pipeline({"recommend": "{}"})

        with pytest.raises(EmbeddingError):
            pipeline.process(RecommendationRequest(message="What's the best card for travel?"))

    def test_missing_card_data_propagates(self, make_pipeline, fake_embedder):
        """An empty card source on the retrieval path raises."""
        empty_provider = EmbeddingStoreProvider(StaticCardSource([]), fake_embedder)
        pipeline, _generator = make_pipeline({"recommend": "{}"}, card_provider=empty_provider)

        with pytest.raises(DataUnavailable):
            pipeline.process(RecommendationRequest(message="What's the best card for travel?"))

    def test_store_built_once_across_requests(self, make_pipeline, by_name, fake_embedder):
        """Card embeddings are computed once and reused."""
        pipeline, _generator = make_pipeline(
            {
                "recommend": [travel_response(by_name), travel_response(by_name)],
                "title": "Travel Cards",
            }
        )

        for _ in range(2):
            pipeline.process(RecommendationRequest(message="What's the best card for travel?"))

        assert len(fake_embedder.embed_many_calls) == 1
        assert len(fake_embedder.embed_calls) == 2

    def test_previous_cards_build_attempted_once(
        self, make_pipeline, sample_cards, fake_embedder
    ):
        """A failing store build is tried once per request, however many previous cards."""
        fake_embedder.fail = True
        pipeline, _generator = make_pipeline(
            {
                "previous_answer": '{"summary": "The Citi Double Cash has no annual fee."}',
                "title": "Annual Fees",
            }
        )
        previous = [Recommendation.from_record(card, "Good.") for card in sample_cards[:3]]

        response = pipeline.process(
            RecommendationRequest(
                message="Which of these cards has the lowest annual fee?",
                previous_recommendations=previous,
            )
        )

        assert response.metadata["mode"] == "about_previous_cards"
        assert "no annual fee" in response.summary
        assert len(fake_embedder.embed_many_calls) == 1

    def test_specific_card_then_retrieval_builds_once(self, make_pipeline, fake_embedder):
        """A failed build during card resolution is not repeated by retrieval."""
        fake_embedder.fail = True
        pipeline, generator = make_pipeline(
            {
                "specific_check": json.dumps(
                    {"is_specific_card": True, "card_name": "Citi Double Cash"}
                ),
                "needs_check": '{"needs_cards": true}',
                "recommend": "{}",
            }
        )

        with pytest.raises(EmbeddingError):
            pipeline.process(RecommendationRequest(message="Citi Double Cash please"))

        assert len(fake_embedder.embed_many_calls) == 1
        assert "recommend" not in generator.kinds


class TestAsyncProcess:
    """Tests for the async entry point."""

    def test_aprocess_returns_response(self, make_pipeline, by_name):
        """aprocess returns the same response as process."""
        pipeline, _generator = make_pipeline(
            {"recommend": travel_response(by_name), "title": "Travel Cards"}
        )

        response = asyncio.run(
            pipeline.aprocess(RecommendationRequest(message="What's the best card for travel?"))
        )

        assert len(response.recommendations) == 3

    def test_aprocess_timeout_degrades(self, make_pipeline, by_name):
        """A request exceeding the timeout yields a degraded response."""

        def slow(messages):
            time.sleep(0.5)
            return travel_response(by_name)

        pipeline, _generator = make_pipeline(
            {"recommend": slow, "title": "Travel Cards"},
            config=PipelineConfig(timeout_seconds=0.05),
        )

        response = asyncio.run(
            pipeline.aprocess(RecommendationRequest(message="What's the best card for travel?"))
        )

        assert response.summary == TIMEOUT_SUMMARY
        assert response.recommendations == []
        assert response.degraded is True


# =============================================================================
# Entry Point Tests
# =============================================================================


class TestEntryPoints:
    """Tests for the plain-data entry points."""

    def test_generate_recommendations_returns_dict(self, provider, make_generator, by_name):
        """Plain dict history and previous cards are accepted and a dict returned."""
        generator = make_generator(
            {"recommend": travel_response(by_name), "title": "Travel Cards"}
        )
        pipeline = create_pipeline(generator=generator, provider=provider)

        result = generate_recommendations(
            "What's the best card for travel?",
            conversation_history=[
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello! How can I help?"},
            ],
            pipeline=pipeline,
        )

        assert set(result) == {
            "recommendations",
            "summary",
            "title",
            "raw_model_answer",
            "metadata",
        }
        assert [rec["credit_card_name"] for rec in result["recommendations"]] == TRAVEL_CARDS
        messages = generator.calls_for("recommend")[0]["messages"]
        assert messages[1] == {"role": "user", "content": "Hi"}

    def test_generate_recommendations_with_previous_dicts(self, provider, make_generator):
        """Previous recommendations may be passed as dicts."""
        generator = make_generator(
            {"previous_answer": '{"summary": "It has no annual fee."}', "title": "Fees"}
        )
        pipeline = create_pipeline(generator=generator, provider=provider)

        result = generate_recommendations(
            "Which of these has the lowest annual fee?",
            previous_recommendations=[
                {"credit_card_name": "Citi Double Cash", "apply_url": "https://example.com/citi"}
            ],
            pipeline=pipeline,
        )

        assert result["recommendations"] == []
        assert result["summary"] == "It has no annual fee."

    def test_suggest_follow_ups(self, make_generator):
        """Suggestions come from the generator with the fallback on failure."""
        generator = make_generator(
            {"suggestions": '{"suggestions": ["Which has no annual fee?", "Any student cards?"]}'}
        )

        assert suggest_follow_ups("best travel card", generator=generator) == [
            "Which has no annual fee?",
            "Any student cards?",
        ]
        assert suggest_follow_ups("best travel card", generator=make_generator()) == (
            FALLBACK_SUGGESTIONS
        )
