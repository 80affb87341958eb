"""Embedding adapter for merchant keys.

:meth:`MerchantEmbedder.embed_many` returns a ``(len(texts), dimensions)``
float matrix, one row per input text, together with the source that produced
it. The remote path sends the whole batch to the OpenAI embeddings endpoint
in one request; if that request fails after retries, or returns something
unusable, *every* row comes from :func:`fallback_vector` so that similarities
are always computed inside a single vector space.

The fallback hashes lowercase character trigrams into ``dimensions`` buckets
and L2-normalizes the counts. It is deterministic across processes (blake2b,
not ``hash()``), and spelling variants of the same merchant share most of
their trigrams.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Sequence
from typing import Any, Literal, Protocol

import numpy as np
from openai import OpenAI

from .config import PipelineConfig
from .errors import CapabilityError
from .logging_setup import get_logger
from .retry import call_with_retry

_logger = get_logger("transaction_intelligence.embeddings")

type Vector = np.ndarray
type VectorSource = Literal["remote", "fallback"]

_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")


class Embedder(Protocol):
    def embed_many(self, texts: Sequence[str]) -> tuple[np.ndarray, VectorSource]: ...


def _trigram_bucket(trigram: str, dimensions: int) -> int:
    digest = hashlib.blake2b(trigram.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dimensions


def fallback_vector(text: str, dimensions: int) -> Vector:
    """Deterministic bag-of-trigrams unit vector for ``text``.

    Empty or symbol-only text maps to a fixed unit vector on bucket 0.
    """

    vec = np.zeros(dimensions, dtype=np.float64)
    norm = _NON_ALNUM_RE.sub(" ", text.lower()).strip()
    if not norm:
        vec[0] = 1.0
        return vec
    padded = f" {norm} "
    buckets = [_trigram_bucket(padded[i : i + 3], dimensions) for i in range(len(padded) - 2)]
    np.add.at(vec, buckets, 1.0)
    return vec / np.linalg.norm(vec)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0.0 when either is a zero vector."""

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"vector shapes differ: {va.shape} != {vb.shape}")
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(va @ vb / (na * nb))


def unit_rows(matrix: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Row-normalize ``matrix``; all-zero rows stay zero."""

    m = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1, keepdims=True)
    return np.divide(m, norms, out=np.zeros_like(m), where=norms > 0)


def _create_client() -> OpenAI:
    return OpenAI(max_retries=0)


def _parse_embeddings(resp: Any, expected: int, dimensions: int) -> np.ndarray:
    data = getattr(resp, "data", None)
    if not data or len(data) != expected:
        got = 0 if not data else len(data)
        raise ValueError(f"embedding response has {got} items; expected {expected}")
    ordered = sorted(data, key=lambda item: getattr(item, "index", 0))
    rows = [getattr(item, "embedding", None) for item in ordered]
    if any(not isinstance(r, (list, tuple)) for r in rows):
        raise ValueError("embedding is not a list of floats")
    matrix = np.asarray(rows, dtype=np.float64)
    if matrix.shape != (expected, dimensions):
        raise ValueError(f"embedding matrix has shape {matrix.shape}")
    return matrix


class MerchantEmbedder:
    """Remote embeddings with an all-or-nothing local fallback per batch."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or _create_client
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _fallback(self, texts: Sequence[str]) -> np.ndarray:
        dims = self._config.embedding_dimensions
        return np.vstack([fallback_vector(t, dims) for t in texts])

    def _embed_remote(self, texts: Sequence[str]) -> np.ndarray:
        client = self._get_client()
        dims = self._config.embedding_dimensions

        def _call(timeout_s: float) -> np.ndarray:
            resp = client.embeddings.create(
                model=self._config.embedding_model,
                input=list(texts),
                dimensions=dims,
                timeout=timeout_s,
            )
            return _parse_embeddings(resp, len(texts), dims)

        return call_with_retry(_call, self._config.retry, label="embeddings")

    def embed_many(self, texts: Sequence[str]) -> tuple[np.ndarray, VectorSource]:
        if not texts:
            return np.empty((0, self._config.embedding_dimensions)), "fallback"
        if not self._config.remote_enabled:
            return self._fallback(texts), "fallback"
        try:
            return self._embed_remote(texts), "remote"
        except CapabilityError as e:
            _logger.warning(
                "embeddings:fallback count=%d attempts=%d error=%s",
                len(texts),
                e.attempts,
                (e.__cause__ or e).__class__.__name__,
            )
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "embeddings:fallback count=%d attempts=0 error=%s",
                len(texts),
                e.__class__.__name__,
            )
        return self._fallback(texts), "fallback"


__all__ = [
    "Embedder",
    "MerchantEmbedder",
    "Vector",
    "cosine_similarity",
    "fallback_vector",
    "unit_rows",
]
