# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Embedding provider: "embed batch of texts" and "embed one query".

The concrete provider wraps a ChromaDB embedding function (local
SentenceTransformer or OpenAI), so any chromadb-compatible callable can be
plugged in, including deterministic fakes in tests.
"""
import logging
from typing import Optional, Protocol, Sequence

from chromadb.utils import embedding_functions

from .config import Config
from .errors import EmbeddingError, FraglensError
from .timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


def make_embedding_function(config: Config):
    """Build the chromadb embedding function selected by config."""
    if config.embedding_provider == "local":
        return embedding_functions.SentenceTransformerEmbeddingFunction(
            model_name=config.embedding_model
        )
    return embedding_functions.OpenAIEmbeddingFunction(
        api_key=config.openai_api_key,
        model_name=config.openai_embedding_model,
    )


class ChromaEmbeddingProvider:
    def __init__(self, embedding_fn, timeout: Optional[float] = None):
        self.ef = embedding_fn
        self.timeout = timeout
        self._dimension: Optional[int] = None

    @classmethod
    def from_config(cls, config: Config) -> "ChromaEmbeddingProvider":
        return cls(make_embedding_function(config), timeout=config.embed_timeout)

    def _call(self, texts: list[str], operation: str) -> list[list[float]]:
        try:
            raw = call_with_timeout(self.ef, texts, timeout=self.timeout, operation=operation)
        except FraglensError:
            raise
        except Exception as e:
            raise EmbeddingError(f"{operation} failed: {e}") from e
        vectors = [[float(x) for x in vec] for vec in raw]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"{operation} returned {len(vectors)} vectors for {len(texts)} texts"
            )
        if vectors and self._dimension is None:
            self._dimension = len(vectors[0])
        return vectors

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        texts = list(texts)
        if not texts:
            return []
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValueError(f"Cannot embed blank text at position {i}")
        return self._call(texts, "embed_batch")

    def embed_query(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed a blank query")
        return self._call([text.strip()], "embed_query")[0]

    @property
    def dimension(self) -> int:
        """Embedding dimension, probed once on first use."""
        if self._dimension is None:
            self.embed_query(" probe ")
        return self._dimension
