"""In-memory embedding store for the card corpus.

The store holds every card record with its embedding vector and answers
nearest-neighbour queries by cosine similarity. It is built once, lazily,
by an ``EmbeddingStoreProvider`` and never mutated afterwards, so reads are
safe from any thread without locking.

Usage:
    provider = EmbeddingStoreProvider(JsonFileCardSource("cards.json"), OpenAIEmbedder())

    vector = provider.embed_query("best card for travel")
    candidates = provider.find_similar(vector, k=8)
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from card_advisor.core.logging_config import get_logger
from card_advisor.models.card_models import (
    CardEmbedding,
    CardRecord,
    embedding_text,
    record_name,
    record_url,
)
from card_advisor.services.card_resolver import normalize_card_name
from card_advisor.services.card_source import CardSource
from card_advisor.services.errors import DataUnavailable, EmbeddingError
from card_advisor.services.generation import Embedder

logger = get_logger(__name__)


# =============================================================================
# Store
# =============================================================================


class EmbeddingStore(BaseModel):
    """Ordered card embeddings plus the time they were generated.

    Attributes:
        embeddings: One CardEmbedding per card, in source order.
        generated_at: When the store was built.
    """

    model_config = ConfigDict(frozen=True)

    embeddings: list[CardEmbedding] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def cards(self) -> list[CardRecord]:
        return [embedding.record for embedding in self.embeddings]

    def __len__(self) -> int:
        return len(self.embeddings)

    def _matrix(self) -> np.ndarray:
        return np.asarray([embedding.vector for embedding in self.embeddings], dtype=np.float64)

    def find_similar_scored(
        self, vector: list[float], k: int
    ) -> list[tuple[CardEmbedding, float]]:
        """Rank stored cards by cosine similarity to a query vector.

        Ties keep insertion order (stable sort). Zero vectors score 0.

        Args:
            vector: Query embedding.
            k: Maximum number of results.

        Returns:
            Up to ``k`` (card, similarity) pairs, most similar first.

        Raises:
            EmbeddingError: If the query vector's dimension differs from
                the store's.
        """
        if not self.embeddings or k <= 0:
            return []

        matrix = self._matrix()
        query = np.asarray(vector, dtype=np.float64)
        if query.shape != (matrix.shape[1],):
            raise EmbeddingError(
                f"Query vector has dimension {query.size}, store uses {matrix.shape[1]}"
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        order = np.argsort(-scores, kind="stable")[:k]
        return [(self.embeddings[i], float(scores[i])) for i in order]

    def find_similar(self, vector: list[float], k: int) -> list[CardEmbedding]:
        """Return up to ``k`` cards ordered by descending similarity."""
        return [embedding for embedding, _score in self.find_similar_scored(vector, k)]

    def find_by_name(self, name: str) -> CardEmbedding | None:
        """Exact lookup on the normalized card name."""
        wanted = normalize_card_name(name)
        for embedding in self.embeddings:
            if normalize_card_name(embedding.name) == wanted:
                return embedding
        return None


# =============================================================================
# Provider
# =============================================================================


def _clean_record(raw: Mapping[str, Any]) -> CardRecord:
    """Drop empty cells and flatten nested values to JSON text."""
    record: CardRecord = {}
    for field, value in raw.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float)):
            record[str(field)] = value
        else:
            record[str(field)] = json.dumps(value, default=str)
    return record


def _usable_records(records: list[Any]) -> list[CardRecord]:
    """Clean records and drop those without a name or URL and repeated names."""
    usable: list[CardRecord] = []
    seen: set[str] = set()
    for raw in records:
        if not isinstance(raw, Mapping):
            logger.warning(
                "Skipping card record that is not an object",
                extra={"extra_data": {"record_type": type(raw).__name__}},
            )
            continue
        record = _clean_record(raw)
        name = record_name(record)
        if not name or not record_url(record):
            logger.warning(
                "Skipping card record without name or application URL",
                extra={"extra_data": {"card_name": name or None}},
            )
            continue
        key = normalize_card_name(name)
        if key in seen:
            logger.warning(
                f"Skipping duplicate card record: {name}",
                extra={"extra_data": {"card_name": name}},
            )
            continue
        seen.add(key)
        usable.append(record)
    return usable


class EmbeddingStoreProvider:
    """Owns the lazily built, process-lifetime EmbeddingStore.

    The first ``load()`` builds the store from the card source and embedder;
    later calls return the cached store. Concurrent first calls are
    serialized so the (paid) build happens at most once.

    Attributes:
        source: Where card records come from.
        embedder: Embedding service for card texts and queries.
    """

    def __init__(self, source: CardSource, embedder: Embedder) -> None:
        self.source = source
        self.embedder = embedder
        self._store: EmbeddingStore | None = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._store is not None

    def load(self) -> EmbeddingStore:
        """Return the store, building it on first use.

        Returns:
            The cached EmbeddingStore.

        Raises:
            DataUnavailable: If the source fails or yields no usable cards.
            EmbeddingError: If card embedding fails.
        """
        store = self._store
        if store is not None:
            return store

        with self._lock:
            if self._store is None:
                self._store = self._build()
            return self._store

    def _build(self) -> EmbeddingStore:
        try:
            records = self.source.load()
        except DataUnavailable:
            raise
        except Exception as e:
            raise DataUnavailable(f"Card source failed: {e}") from e

        usable = _usable_records(list(records or []))
        if not usable:
            raise DataUnavailable("Card source returned no usable cards")

        vectors = self.embedder.embed_many([embedding_text(record) for record in usable])
        if len(vectors) != len(usable):
            raise EmbeddingError(
                f"Got {len(vectors)} vectors for {len(usable)} cards"
            )
        dimensions = {len(vector) for vector in vectors}
        if len(dimensions) != 1 or 0 in dimensions:
            raise EmbeddingError(f"Inconsistent embedding dimensions: {sorted(dimensions)}")

        store = EmbeddingStore(
            embeddings=[
                CardEmbedding(record=record, vector=vector)
                for record, vector in zip(usable, vectors)
            ],
        )
        logger.info(
            "Embedding store built",
            extra={
                "extra_data": {
                    "card_count": len(store),
                    "dimension": dimensions.pop(),
                    "skipped": len(records or []) - len(usable),
                }
            },
        )
        return store

    def embed_query(self, text: str) -> list[float]:
        """Embed a user query. Failures propagate as EmbeddingError."""
        return self.embedder.embed(text)

    def find_similar(self, vector: list[float], k: int) -> list[CardEmbedding]:
        """Nearest cards to ``vector`` from the (lazily loaded) store."""
        return self.load().find_similar(vector, k)

    def cards(self) -> list[CardEmbedding]:
        """All stored cards, loading the store if needed."""
        return list(self.load().embeddings)

    def invalidate(self) -> None:
        """Drop the cached store so the next load rebuilds it."""
        with self._lock:
            self._store = None
        logger.info("Embedding store invalidated")


class StoreHandle:
    """One request's view of a provider.

    The first ``load()`` asks the provider for the store. The outcome, the
    store or the DataUnavailable/EmbeddingError, is remembered, so later
    stages of the same request never trigger another build attempt.

    Attributes:
        provider: The process-wide provider.
    """

    def __init__(self, provider: EmbeddingStoreProvider) -> None:
        self.provider = provider
        self._store: EmbeddingStore | None = None
        self._error: DataUnavailable | EmbeddingError | None = None

    @property
    def is_loaded(self) -> bool:
        return self._store is not None

    def load(self) -> EmbeddingStore:
        """Return the store, attempting the build at most once.

        Raises:
            DataUnavailable: If the first attempt failed to read the cards.
            EmbeddingError: If the first attempt failed to embed the cards.
        """
        if self._error is not None:
            raise self._error
        if self._store is None:
            try:
                self._store = self.provider.load()
            except (DataUnavailable, EmbeddingError) as e:
                self._error = e
                raise
        return self._store

    def embed_query(self, text: str) -> list[float]:
        return self.provider.embed_query(text)

    def cards(self) -> list[CardEmbedding]:
        return list(self.load().embeddings)


# =============================================================================
# Global provider instance
# =============================================================================


_default_provider: EmbeddingStoreProvider | None = None
_default_provider_lock = threading.Lock()


def get_embedding_store_provider(
    source: CardSource | None = None,
    embedder: Embedder | None = None,
) -> EmbeddingStoreProvider:
    """Get the process-wide embedding store provider.

    The first call must supply a card source; the embedder defaults to the
    OpenAI-backed one.

    Returns:
        EmbeddingStoreProvider singleton instance.

    Raises:
        DataUnavailable: If no provider exists yet and no source is given.
    """
    global _default_provider
    with _default_provider_lock:
        if _default_provider is None:
            if source is None:
                raise DataUnavailable("No card source configured for the embedding store")
            if embedder is None:
                from card_advisor.services.generation import OpenAIEmbedder

                embedder = OpenAIEmbedder()
            _default_provider = EmbeddingStoreProvider(source, embedder)
        return _default_provider


def reset_embedding_store_provider() -> None:
    """Reset the global provider instance.

    Useful for testing or reconfiguration.
    """
    global _default_provider
    with _default_provider_lock:
        _default_provider = None
