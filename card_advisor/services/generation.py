"""Adapters for the external embedding and text-generation services.

The pipeline talks to both services through two small protocols so tests can
substitute scripted fakes. The OpenAI-backed implementations wrap LangChain
clients and translate any client failure into the card advisor's error
taxonomy.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from card_advisor.core.logging_config import get_logger
from card_advisor.services.errors import EmbeddingError, GenerationError

logger = get_logger(__name__)

JSON_RESPONSE_FORMAT = {"type": "json_object"}


@runtime_checkable
class TextGenerator(Protocol):
    """Text-generation service used for classification and synthesis."""

    def complete(
        self,
        messages: Sequence[dict[str, str]],
        structured: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        ...


@runtime_checkable
class Embedder(Protocol):
    """Embedding service used to build the store and embed queries."""

    def embed(self, text: str) -> list[float]:
        ...

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        ...


def to_langchain_messages(messages: Sequence[dict[str, str]]) -> list[BaseMessage]:
    """Convert ``{"role", "content"}`` dicts to LangChain messages.

    Raises:
        ValueError: If a message has an unknown role.
    """
    converted: list[BaseMessage] = []
    for message in messages:
        role = message.get("role")
        content = message.get("content", "")
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "user":
            converted.append(HumanMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            raise ValueError(f"Unknown message role: {role!r}")
    return converted


class ChatGenerator:
    """TextGenerator backed by a LangChain ChatOpenAI client.

    Attributes:
        llm: The chat model. Created from environment config when omitted.
    """

    def __init__(self, llm: ChatOpenAI | None = None) -> None:
        if llm is None:
            from card_advisor.services.llm_config import get_chat_llm

            llm = get_chat_llm()
        self.llm = llm

    def complete(
        self,
        messages: Sequence[dict[str, str]],
        structured: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Run one chat completion.

        Args:
            messages: Ordered ``{"role", "content"}`` turns.
            structured: Request a single JSON object as the response text.
                The caller still validates the result.
            temperature: Per-call temperature override.
            max_tokens: Per-call response length limit.

        Returns:
            The response text.

        Raises:
            GenerationError: If the service call fails.
        """
        bind_kwargs: dict[str, Any] = {}
        if structured:
            bind_kwargs["response_format"] = JSON_RESPONSE_FORMAT
        if temperature is not None:
            bind_kwargs["temperature"] = temperature
        if max_tokens is not None:
            bind_kwargs["max_tokens"] = max_tokens

        runnable = self.llm.bind(**bind_kwargs) if bind_kwargs else self.llm
        try:
            result = runnable.invoke(to_langchain_messages(messages))
        except Exception as e:
            logger.error(
                "Text generation failed",
                extra={"extra_data": {"structured": structured, "error": str(e)}},
            )
            raise GenerationError(f"Text generation failed: {e}") from e

        return result.content if isinstance(result.content, str) else str(result.content)


class OpenAIEmbedder:
    """Embedder backed by LangChain's OpenAIEmbeddings client."""

    def __init__(self, embeddings: OpenAIEmbeddings | None = None) -> None:
        if embeddings is None:
            from card_advisor.services.llm_config import get_embeddings

            embeddings = get_embeddings()
        self.embeddings = embeddings

    def embed(self, text: str) -> list[float]:
        """Embed a single query text.

        Raises:
            EmbeddingError: If the service call fails or returns nothing.
        """
        try:
            vector = self.embeddings.embed_query(text)
        except Exception as e:
            raise EmbeddingError(f"Query embedding failed: {e}") from e
        if not vector:
            raise EmbeddingError("Embedding service returned an empty vector")
        return [float(value) for value in vector]

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of card texts.

        Raises:
            EmbeddingError: If the service call fails or the batch size
                does not match.
        """
        try:
            vectors = self.embeddings.embed_documents(list(texts))
        except Exception as e:
            raise EmbeddingError(f"Card embedding failed: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [[float(value) for value in vector] for vector in vectors]
