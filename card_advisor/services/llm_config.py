"""Centralized model and pipeline configuration for the card advisor.

This module provides environment variable-based configuration for the chat
and embedding models and factory functions to create configured LangChain
clients. Retries are disabled on every client; a failed call surfaces to
the caller.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

# Load environment variables from .env file
load_dotenv()


# Default model configurations
DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for the chat and embedding models."""

    chat_model: str
    embedding_model: str
    api_key: str | None


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for pipeline execution.

    Attributes:
        top_n_cards: Number of candidate cards retrieved per query.
        recommendation_count: Number of recommendations on the general path.
        history_window: Conversation turns passed to synthesis calls.
        classifier_history_window: Conversation turns passed to
            classification and scoped-answer calls.
        timeout_seconds: Max time ``aprocess`` waits for one query.
    """

    top_n_cards: int = 8
    recommendation_count: int = 3
    history_window: int = 6
    classifier_history_window: int = 4
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create config from environment variables.

        Environment variables (all optional with defaults):
            TOP_N_CARDS: Candidates retrieved per query (default: 8)
            RECOMMENDATION_COUNT: Recommendations returned (default: 3)
            HISTORY_WINDOW: Turns of history for synthesis (default: 6)
            CLASSIFIER_HISTORY_WINDOW: Turns of history for classification (default: 4)
            PIPELINE_TIMEOUT: Timeout in seconds for async callers (default: 60.0)

        Returns:
            PipelineConfig with values from environment.
        """
        return cls(
            top_n_cards=int(os.getenv("TOP_N_CARDS", "8")),
            recommendation_count=int(os.getenv("RECOMMENDATION_COUNT", "3")),
            history_window=int(os.getenv("HISTORY_WINDOW", "6")),
            classifier_history_window=int(os.getenv("CLASSIFIER_HISTORY_WINDOW", "4")),
            timeout_seconds=float(os.getenv("PIPELINE_TIMEOUT", "60.0")),
        )


@lru_cache(maxsize=1)
def get_llm_config() -> LLMConfig:
    """Load model configuration from environment variables.

    Returns:
        LLMConfig with model names and API key.
    """
    return LLMConfig(
        chat_model=os.getenv("CHAT_MODEL", DEFAULT_CHAT_MODEL),
        embedding_model=os.getenv("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
        api_key=os.getenv("OPENAI_API_KEY"),
    )


def get_chat_llm(temperature: float = 0.3) -> ChatOpenAI:
    """Create a ChatOpenAI client for classification and synthesis calls.

    Args:
        temperature: Default sampling temperature; individual calls may
            override it.

    Returns:
        Configured ChatOpenAI instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    config = get_llm_config()
    if not config.api_key:
        raise ValueError("OPENAI_API_KEY environment variable is required")

    return ChatOpenAI(
        model=config.chat_model,
        temperature=temperature,
        api_key=config.api_key,
        max_retries=0,
    )


def get_embeddings() -> OpenAIEmbeddings:
    """Create an OpenAIEmbeddings client for card and query vectors.

    Returns:
        Configured OpenAIEmbeddings instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    config = get_llm_config()
    if not config.api_key:
        raise ValueError("OPENAI_API_KEY environment variable is required")

    return OpenAIEmbeddings(
        model=config.embedding_model,
        api_key=config.api_key,
        max_retries=0,
    )


def clear_config_cache() -> None:
    """Clear the cached model configuration.

    Useful for testing when environment variables change.
    """
    get_llm_config.cache_clear()
