from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

# Opaque text -> vector function. Tests and embedders supplied by callers
# only have to satisfy this shape.
Embedder = Callable[[Sequence[str]], list[list[float]]]


class _FastEmbedClient:
    def __init__(self, model: str) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed is required for semantic search") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts))
        return [[float(x) for x in vec] for vec in embeddings]

    def __call__(self, texts: Sequence[str]) -> list[list[float]]:
        return self.embed(texts)


_CLIENT: _FastEmbedClient | None = None


def embeddings_disabled() -> bool:
    return os.getenv("IMPRESSIONISM_EMBEDDING_DISABLED", "").lower() in {"1", "true", "yes"}


def get_embedding_client(model: str | None = None) -> _FastEmbedClient | None:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    if embeddings_disabled():
        return None
    model = model or os.getenv("IMPRESSIONISM_EMBEDDING_MODEL", "BAAI/bge-small-en-v1.5")
    try:
        _CLIENT = _FastEmbedClient(model=model)
    except Exception as exc:
        logger.warning("embedding client init failed", exc_info=exc)
        _CLIENT = None
    return _CLIENT


def embed_texts(texts: Sequence[str], embedder: Embedder | None) -> list[list[float]]:
    if embedder is None or not texts:
        return []
    return [list(vector) for vector in embedder(list(texts))]


def embed_text(text: str, embedder: Embedder | None) -> list[float]:
    vectors = embed_texts([text], embedder)
    return vectors[0] if vectors else []


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def resolve_embedder(model: str | None = None, *, disabled: bool = False) -> Embedder | None:
    if disabled:
        return None
    return get_embedding_client(model)
