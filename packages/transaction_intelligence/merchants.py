"""Merchant key extraction and greedy merchant clustering.

The clustering unit is the *merchant key*, a cleaned-up description, never the
raw description. Keys are embedded once per distinct value and clustered in a
single greedy pass: each key joins the first existing cluster whose *first
member* is more similar than the threshold, otherwise it starts a new cluster.
There is no refinement pass, so the result depends on encounter order. The
same batch in the same order always clusters the same way.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import numpy as np

from .embeddings import Embedder, unit_rows
from .logging_setup import get_logger
from .models import CategorizedTransaction, MerchantCluster, MerchantNormalization

_logger = get_logger("transaction_intelligence.merchants")

MAX_KEY_LENGTH = 40
UNKNOWN_MERCHANT = "UNKNOWN"

# "1234 ", "#0042 ", "556-12 " at the start of a description.
_LEADING_REF_RE = re.compile(r"^(?:#?\d[\d-]*\s+)+")
# " 12345", " #778", " 866-579" at the end.
_TRAILING_NUM_RE = re.compile(r"(?:\s+#?\d[\d-]*)+$")
_WS_RE = re.compile(r"\s+")


def extract_merchant_key(description: str) -> str:
    """Reduce a raw description to the merchant key used for clustering.

    >>> extract_merchant_key("1234 AMZN Mktp US*2K3LL1 SEATTLE")
    'AMZN Mktp US'
    >>> extract_merchant_key("STARBUCKS STORE 00123")
    'STARBUCKS STORE'
    """

    text = _WS_RE.sub(" ", description).strip()
    key = _LEADING_REF_RE.sub("", text)
    if "*" in key:
        head, _, tail = key.partition("*")
        key = head if head.strip() else tail
    key = _TRAILING_NUM_RE.sub("", key.strip())
    key = key.strip()[:MAX_KEY_LENGTH].strip()
    if key:
        return key
    return text[:MAX_KEY_LENGTH].strip() or UNKNOWN_MERCHANT


def canonical_name(members: Sequence[str]) -> str:
    """Shortest member; the earliest one wins a tie."""

    if not members:
        raise ValueError("cluster has no members")
    return min(members, key=len)


def cluster_keys(
    keys: Sequence[str],
    vectors: Sequence[Sequence[float]] | np.ndarray,
    *,
    threshold: float,
) -> list[MerchantCluster]:
    """Greedy single-pass clustering of ``keys`` by their ``vectors``.

    ``keys`` must be distinct and aligned with the rows of ``vectors``. Each
    row is compared, by cosine similarity, against the first member of every
    existing cluster at once and joins the earliest one above ``threshold``.
    """

    if len(keys) != len(vectors):
        raise ValueError("keys and vectors must have the same length")
    if len(set(keys)) != len(keys):
        raise ValueError("keys must be distinct")
    if not keys:
        return []

    unit = unit_rows(vectors)
    groups: list[list[int]] = []
    for i, row in enumerate(unit):
        if groups:
            sims = unit[[members[0] for members in groups]] @ row
            hits = np.flatnonzero(sims > threshold)
            if hits.size:
                groups[int(hits[0])].append(i)
                continue
        groups.append([i])

    clusters = []
    for members in groups:
        names = tuple(keys[i] for i in members)
        clusters.append(MerchantCluster(canonical=canonical_name(names), members=names))
    return clusters


class MerchantNormalizer:
    """Groups a categorized batch by canonical merchant."""

    def __init__(self, embedder: Embedder, *, threshold: float = 0.8) -> None:
        self._embedder = embedder
        self._threshold = threshold

    def normalize(self, categorized: Sequence[CategorizedTransaction]) -> MerchantNormalization:
        keys = list(dict.fromkeys(ct.merchant_key for ct in categorized))
        vectors, source = self._embedder.embed_many(keys)
        clusters = cluster_keys(keys, vectors, threshold=self._threshold)

        canonical_by_key = {m: c.canonical for c in clusters for m in c.members}
        grouped: dict[str, list[CategorizedTransaction]] = {c.canonical: [] for c in clusters}
        for ct in categorized:
            grouped[canonical_by_key[ct.merchant_key]].append(ct)

        _logger.info(
            "merchants:normalized keys=%d clusters=%d source=%s",
            len(keys),
            len(clusters),
            source,
        )
        return MerchantNormalization(
            clusters=tuple(clusters),
            canonical_by_key=canonical_by_key,
            groups={name: tuple(txs) for name, txs in grouped.items()},
            vector_source=source,
        )


__all__ = [
    "MAX_KEY_LENGTH",
    "MerchantNormalizer",
    "canonical_name",
    "cluster_keys",
    "extract_merchant_key",
]
