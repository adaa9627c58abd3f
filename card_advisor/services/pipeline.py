"""Recommendation pipeline with LangGraph.

This module wires the classifier, embedding store and synthesizer into one
graph that handles a single user turn:

START -> classify -> {answer_previous | describe_card | general_answer | recommend} -> END

Only the retrieval path (``recommend``) can fail the request, with
DataUnavailable or EmbeddingError. Every other failure degrades into a
renderable response.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, ConfigDict, Field

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import CardEmbedding, ConversationTurn
from card_advisor.models.pipeline_models import (
    ClassificationDecision,
    DecisionKind,
    RecommendationRequest,
    RecommendationResponse,
)
from card_advisor.services.auxiliary import DEFAULT_TITLE, generate_suggestions
from card_advisor.services.card_resolver import CardResolver
from card_advisor.services.card_source import CardSource
from card_advisor.services.classifier import QueryClassifier
from card_advisor.services.embedding_store import (
    EmbeddingStoreProvider,
    StoreHandle,
    get_embedding_store_provider,
)
from card_advisor.services.generation import ChatGenerator, TextGenerator
from card_advisor.services.llm_config import PipelineConfig
from card_advisor.services.synthesizer import (
    RECOMMENDATION_FAILURE_SUMMARY,
    RecommendationSynthesizer,
)

logger = get_logger(__name__)

TIMEOUT_SUMMARY = (
    "I'm sorry, that took longer than expected. Please try your question again."
)

# Decision kind -> graph node handling it
MODE_NODES = {
    DecisionKind.ABOUT_PREVIOUS_CARDS.value: "answer_previous",
    DecisionKind.SPECIFIC_CARD.value: "describe_card",
    DecisionKind.GENERAL_ANSWER.value: "general_answer",
    DecisionKind.NEEDS_CARDS.value: "recommend",
}


# =============================================================================
# LangGraph State
# =============================================================================


class PipelineState(BaseModel):
    """State for one pipeline execution.

    This state flows through graph nodes, accumulating the routing
    decision, retrieved candidates and the final response. ``card_store`` is the
    request's handle on the card store, shared by every node so the store
    build is attempted at most once per request.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Input
    request: RecommendationRequest
    card_store: StoreHandle

    # Routing
    decision: ClassificationDecision | None = None

    # Retrieval
    candidates: list[CardEmbedding] = Field(default_factory=list)

    # Output
    response: RecommendationResponse | None = None


def _with_reasoning(
    response: RecommendationResponse, decision: ClassificationDecision
) -> RecommendationResponse:
    metadata = {**response.metadata, "reasoning": decision.reasoning}
    return response.model_copy(update={"metadata": metadata})


# =============================================================================
# Pipeline Implementation
# =============================================================================


class RecommendationPipeline:
    """Answers one user turn about credit cards.

    Attributes:
        generator: Text-generation service shared by every stage.
        provider: Embedding store provider for retrieval and lookups.
        config: Pipeline configuration.
        graph: The compiled LangGraph.
    """

    def __init__(
        self,
        generator: TextGenerator,
        provider: EmbeddingStoreProvider,
        config: PipelineConfig | None = None,
    ) -> None:
        self.generator = generator
        self.provider = provider
        self.config = config or PipelineConfig()
        self.graph = self._build_graph()

    def _build_graph(self) -> Any:
        """Build the LangGraph for one user turn.

        Returns:
            Compiled StateGraph ready for execution.
        """
        graph = StateGraph(PipelineState)

        # Add nodes
        graph.add_node("classify", self._classify_node)
        graph.add_node("answer_previous", self._answer_previous_node)
        graph.add_node("describe_card", self._describe_card_node)
        graph.add_node("general_answer", self._general_answer_node)
        graph.add_node("recommend", self._recommend_node)

        # Define edges
        graph.set_entry_point("classify")

        def route_by_decision(state: PipelineState) -> str:
            if state.decision is None:
                return "recommend"
            return MODE_NODES[state.decision.kind.value]

        graph.add_conditional_edges(
            "classify",
            route_by_decision,
            {node: node for node in MODE_NODES.values()},
        )

        for node in MODE_NODES.values():
            graph.add_edge(node, END)

        return graph.compile()

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _classifier(self, store: StoreHandle) -> QueryClassifier:
        return QueryClassifier(self.generator, CardResolver(store.cards), self.config)

    def _synthesizer(self, store: StoreHandle) -> RecommendationSynthesizer:
        return RecommendationSynthesizer(self.generator, store, self.config)

    def _classify_node(self, state: PipelineState) -> dict[str, Any]:
        request = state.request
        decision = self._classifier(state.card_store).classify(
            request.message,
            request.conversation_history,
            request.previous_recommendations,
        )
        return {"decision": decision}

    def _answer_previous_node(self, state: PipelineState) -> dict[str, Any]:
        request = state.request
        response = self._synthesizer(state.card_store).answer_about_previous(
            request.message,
            request.previous_recommendations,
            request.conversation_history,
        )
        return {"response": _with_reasoning(response, state.decision)}

    def _describe_card_node(self, state: PipelineState) -> dict[str, Any]:
        request = state.request
        decision = state.decision
        response = self._synthesizer(state.card_store).describe_card(
            decision.card,
            request.message,
            request.conversation_history,
        )
        return {"response": _with_reasoning(response, decision)}

    def _general_answer_node(self, state: PipelineState) -> dict[str, Any]:
        request = state.request
        response = self._synthesizer(state.card_store).general_answer(
            request.message,
            request.conversation_history,
        )
        return {"response": _with_reasoning(response, state.decision)}

    def _recommend_node(self, state: PipelineState) -> dict[str, Any]:
        """Retrieve candidates and synthesize recommendations.

        Raises:
            DataUnavailable: If the card store cannot be built.
            EmbeddingError: If embedding the query or the cards fails.
        """
        request = state.request
        decision = state.decision or ClassificationDecision.needs_cards("default")

        store = state.card_store.load()
        vector = state.card_store.embed_query(request.message)
        candidates = store.find_similar(vector, self.config.top_n_cards)
        logger.info(
            "Candidate cards retrieved",
            extra={
                "extra_data": {
                    "candidate_count": len(candidates),
                    "candidates": [candidate.name for candidate in candidates],
                }
            },
        )

        response = self._synthesizer(state.card_store).recommend(
            request.message,
            candidates,
            request.conversation_history,
        )
        return {"candidates": candidates, "response": _with_reasoning(response, decision)}

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def process(self, request: RecommendationRequest) -> RecommendationResponse:
        """Process one user turn through the pipeline.

        Args:
            request: The user's message with history and previous cards.

        Returns:
            RecommendationResponse for the turn.

        Raises:
            DataUnavailable: If card data is needed and cannot be loaded.
            EmbeddingError: If the retrieval path cannot embed.
        """
        log = logger.bind(request_id=uuid.uuid4().hex[:8])
        log.info(
            "Processing recommendation request",
            extra={
                "extra_data": {
                    "message_preview": request.message[:100],
                    "history_turns": len(request.conversation_history),
                    "previous_count": len(request.previous_recommendations),
                }
            },
        )

        final_state = self.graph.invoke(
            PipelineState(request=request, card_store=StoreHandle(self.provider))
        )

        response = final_state.get("response") if isinstance(final_state, dict) else None
        if response is None:
            log.error("Pipeline finished without a response")
            return RecommendationResponse.degraded_response(
                summary=RECOMMENDATION_FAILURE_SUMMARY,
                mode=DecisionKind.NEEDS_CARDS,
                title=DEFAULT_TITLE,
                error="Unexpected graph output format",
            )

        log.info(
            "Recommendation request complete",
            extra={
                "extra_data": {
                    "mode": response.metadata.get("mode"),
                    "degraded": response.degraded,
                    "recommendation_count": len(response.recommendations),
                }
            },
        )
        return response

    async def aprocess(self, request: RecommendationRequest) -> RecommendationResponse:
        """Async version of process.

        Args:
            request: The user's message with history and previous cards.

        Returns:
            RecommendationResponse for the turn, or a degraded response if
            the configured timeout elapses.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.process, request),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "Recommendation request timed out",
                extra={"extra_data": {"timeout_seconds": self.config.timeout_seconds}},
            )
            return RecommendationResponse.degraded_response(
                summary=TIMEOUT_SUMMARY,
                mode=DecisionKind.NEEDS_CARDS,
                title=DEFAULT_TITLE,
                error=f"Request timed out after {self.config.timeout_seconds}s",
            )


# =============================================================================
# Factory Functions
# =============================================================================


def create_pipeline(
    generator: TextGenerator | None = None,
    provider: EmbeddingStoreProvider | None = None,
    config: PipelineConfig | None = None,
    source: CardSource | None = None,
) -> RecommendationPipeline:
    """Create a configured RecommendationPipeline.

    Args:
        generator: Text-generation service. Defaults to the OpenAI chat model.
        provider: Embedding store provider. Defaults to the process-wide one.
        config: Pipeline configuration. Defaults to environment config.
        source: Card source used when the process-wide provider does not
            exist yet.

    Returns:
        Configured RecommendationPipeline instance.
    """
    return RecommendationPipeline(
        generator=generator or ChatGenerator(),
        provider=provider or get_embedding_store_provider(source),
        config=config or PipelineConfig.from_env(),
    )


def _to_turns(
    history: Sequence[ConversationTurn | Mapping[str, str]] | None,
) -> list[ConversationTurn]:
    return [
        turn if isinstance(turn, ConversationTurn) else ConversationTurn.model_validate(turn)
        for turn in history or []
    ]


def generate_recommendations(
    message: str,
    conversation_history: Sequence[ConversationTurn | Mapping[str, str]] | None = None,
    previous_recommendations: Sequence[Any] | None = None,
    pipeline: RecommendationPipeline | None = None,
) -> dict[str, Any]:
    """Answer one user message.

    This is the main entry point for callers that work with plain data.

    Args:
        message: The user's question.
        conversation_history: Prior ``{"role", "content"}`` turns.
        previous_recommendations: Recommendations shown in the previous
            answer, as models or dicts.
        pipeline: Pipeline to use. Created with defaults when omitted.

    Returns:
        Dictionary with recommendations, summary, title, raw_model_answer
        and metadata.

    Raises:
        DataUnavailable: If card data is needed and cannot be loaded.
        EmbeddingError: If the retrieval path cannot embed.
    """
    request = RecommendationRequest(
        message=message,
        conversation_history=_to_turns(conversation_history),
        previous_recommendations=list(previous_recommendations or []),
    )
    pipeline = pipeline or create_pipeline()
    return pipeline.process(request).model_dump()


def suggest_follow_ups(
    question: str,
    history: Sequence[ConversationTurn | Mapping[str, str]] | None = None,
    generator: TextGenerator | None = None,
) -> list[str]:
    """Suggest questions the user is likely to ask next.

    Args:
        question: The user's latest question.
        history: Prior ``{"role", "content"}`` turns.
        generator: Text-generation service. Defaults to the OpenAI chat model.

    Returns:
        Two to four suggested follow-up questions.
    """
    return generate_suggestions(generator or ChatGenerator(), question, _to_turns(history))
