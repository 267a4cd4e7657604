import hashlib
import re
import uuid

import chromadb
import pytest

from fraglens.activity import AccessRecorder
from fraglens.cache import ResultCache
from fraglens.config import Config
from fraglens.embeddings import ChromaEmbeddingProvider
from fraglens.health import HealthTracker
from fraglens.models import FragmentInput, FragmentMetadata
from fraglens.retriever import Retriever
from fraglens.store import ChromaDocumentStore

DIM = 64
_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashEmbedding:
    """Deterministic bag-of-words embedding: identical text gives an identical
    vector, shared tokens give similar vectors."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls: list[list[str]] = []

    def __call__(self, input):
        texts = list(input)
        self.calls.append(texts)
        return [self.vector(t) for t in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            vec[0] = 1.0
        for token in tokens:
            idx = int(hashlib.sha256(token.encode()).hexdigest(), 16) % self.dim
            vec[idx] += 1.0
        return vec


def meta(owner_id: str = "alice", **kwargs) -> FragmentMetadata:
    return FragmentMetadata(owner_id=owner_id, **kwargs)


def frag(content: str, owner_id: str = "alice", **kwargs) -> FragmentInput:
    return FragmentInput(content=content, metadata=meta(owner_id, **kwargs))


@pytest.fixture
def embedding_fn():
    return HashEmbedding()


@pytest.fixture
def embeddings(embedding_fn):
    return ChromaEmbeddingProvider(embedding_fn, timeout=5.0)


@pytest.fixture
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture
def store(chroma_client):
    """Fresh collection per test; ephemeral clients share state in-process."""
    return ChromaDocumentStore(chroma_client, f"t{uuid.uuid4().hex[:16]}", timeout=5.0)


@pytest.fixture
def config(tmp_path):
    return Config(
        in_memory=True,
        vectorstore_path=str(tmp_path / "vectorstore"),
        embed_timeout=5.0,
        store_timeout=5.0,
    )


@pytest.fixture
def health():
    return HealthTracker()


@pytest.fixture
def retriever(store, embeddings, config, health):
    r = Retriever(
        store=store,
        embeddings=embeddings,
        config=config,
        cache=ResultCache(config.cache_ttl_seconds, config.cache_max_entries),
        access=AccessRecorder(store, config.access_queue_size, health),
        health=health,
    )
    yield r
    r.close()
