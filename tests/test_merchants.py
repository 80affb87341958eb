from __future__ import annotations

import math

import numpy as np

import pytest

from tests.helpers.openai_stub import OpenAIStub, StatusError
from transaction_intelligence.categories import assign_category
from transaction_intelligence.config import PipelineConfig
from transaction_intelligence.embeddings import (
    MerchantEmbedder,
    cosine_similarity,
    fallback_vector,
)
from transaction_intelligence.merchants import (
    MerchantNormalizer,
    canonical_name,
    cluster_keys,
    extract_merchant_key,
)
from transaction_intelligence.models import Transaction
from transaction_intelligence.retry import RetryPolicy

_DIMS = 8
_ONE_SHOT = RetryPolicy(max_attempts=1, backoff_schedule=(0.0,), jitter_pct=0.0)


def _ct(description: str, amount: str = "-10.00", tx_id: str = "t", day: str = "2025-01-01"):
    return assign_category(Transaction(id=tx_id, date=day, description=description, amount=amount))


# ---- Key extraction ------------------------------------------------------------


@pytest.mark.parametrize(
    ("description", "key"),
    [
        ("1234 AMZN Mktp US*2K3LL1 SEATTLE", "AMZN Mktp US"),
        ("STARBUCKS STORE 00123", "STARBUCKS STORE"),
        ("#0042 SHELL OIL 5744", "SHELL OIL"),
        ("  NETFLIX.COM    866-579  ", "NETFLIX.COM"),
        ("SQ *BLUE BOTTLE", "SQ"),
        ("12345", "12345"),
        ("   ", "UNKNOWN"),
    ],
)
def test_extract_merchant_key(description: str, key: str):
    assert extract_merchant_key(description) == key


def test_merchant_key_is_capped():
    key = extract_merchant_key("A" * 100)
    assert len(key) == 40


# ---- Vectors -------------------------------------------------------------------


def test_fallback_vector_is_deterministic_unit_length():
    v1 = fallback_vector("Netflix", 64)
    v2 = fallback_vector("Netflix", 64)
    assert np.array_equal(v1, v2)
    assert v1.shape == (64,)
    assert np.linalg.norm(v1) == pytest.approx(1.0)


def test_fallback_vector_ignores_case_and_punctuation():
    a = fallback_vector("NETFLIX.COM", 64)
    b = fallback_vector("netflix com", 64)
    assert cosine_similarity(a, b) == pytest.approx(1.0)


def test_cosine_similarity_edges():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 0.0])


# ---- Clustering ----------------------------------------------------------------


def _unit(deg: float) -> tuple[float, float]:
    r = math.radians(deg)
    return (math.cos(r), math.sin(r))


def test_greedy_clustering_compares_against_first_member_only():
    # B is within threshold of A; C is close to B but not to A.
    keys = ["ALPHA", "ALPHA CO", "GAMMA"]
    vectors = [_unit(0), _unit(30), _unit(60)]
    clusters = cluster_keys(keys, vectors, threshold=0.8)
    assert [c.members for c in clusters] == [("ALPHA", "ALPHA CO"), ("GAMMA",)]
    assert clusters[0].canonical == "ALPHA"


def test_clustering_is_order_dependent():
    vectors = {"A": _unit(0), "B": _unit(30), "C": _unit(60)}
    forward = cluster_keys(["A", "B", "C"], [vectors[k] for k in "ABC"], threshold=0.8)
    middle_first = cluster_keys(["B", "A", "C"], [vectors[k] for k in "BAC"], threshold=0.8)
    assert len(forward) == 2
    assert len(middle_first) == 1


def test_canonical_name_is_shortest_with_first_tie_winning():
    assert canonical_name(["NETFLIX.COM", "NETFLIX"]) == "NETFLIX"
    assert canonical_name(["ABC", "XYZ"]) == "ABC"


def test_cluster_keys_rejects_misaligned_input():
    with pytest.raises(ValueError):
        cluster_keys(["A", "B"], [(1.0, 0.0)], threshold=0.8)


def test_cluster_keys_accepts_a_matrix_and_isolates_zero_rows():
    matrix = np.array([[1.0, 0.0], [0.0, 0.0], [2.0, 0.1]])
    clusters = cluster_keys(["A", "B", "C"], matrix, threshold=0.8)
    assert [c.members for c in clusters] == [("A", "C"), ("B",)]


# ---- Normalizer + embedder -----------------------------------------------------


def test_normalizer_groups_case_variants_and_is_repeatable():
    batch = [
        _ct("NETFLIX.COM 866-579", tx_id="1"),
        _ct("Netflix.com", tx_id="2"),
        _ct("KROGER #554", tx_id="3"),
    ]
    normalizer = MerchantNormalizer(MerchantEmbedder(PipelineConfig()), threshold=0.8)

    first = normalizer.normalize(batch)
    second = normalizer.normalize(batch)

    assert first.clusters == second.clusters
    assert first.vector_source == "fallback"
    assert first.canonical_for("Netflix.com") == "NETFLIX.COM"
    assert [ct.id for ct in first.groups["NETFLIX.COM"]] == ["1", "2"]
    assert [ct.id for ct in first.groups["KROGER"]] == ["3"]


def test_embedder_remote_batch_call():
    stub = OpenAIStub(embed=lambda text: [float(len(text))] + [1.0] * (_DIMS - 1))
    config = PipelineConfig(
        remote_enabled=True, embedding_dimensions=_DIMS, embedding_model="emb-test", retry=_ONE_SHOT
    )
    vectors, source = MerchantEmbedder(config, client_factory=stub.factory()).embed_many(
        ["A", "BB"]
    )

    assert source == "remote"
    assert vectors.shape == (2, _DIMS)
    assert vectors[:, 0].tolist() == [1.0, 2.0]
    assert len(stub.embedding_calls) == 1
    call = stub.embedding_calls[0]
    assert call["model"] == "emb-test"
    assert call["input"] == ["A", "BB"]
    assert call["dimensions"] == _DIMS


def test_embedder_failure_uses_fallback_for_the_whole_batch():
    def embed(_text: str):
        raise StatusError(500)

    stub = OpenAIStub(embed=embed)
    config = PipelineConfig(remote_enabled=True, embedding_dimensions=_DIMS, retry=_ONE_SHOT)
    vectors, source = MerchantEmbedder(config, client_factory=stub.factory()).embed_many(["A", "B"])

    assert source == "fallback"
    expected = np.vstack([fallback_vector("A", _DIMS), fallback_vector("B", _DIMS)])
    assert np.array_equal(vectors, expected)


def test_embedder_rejects_wrong_dimensions():
    stub = OpenAIStub(embed=lambda _t: [1.0, 2.0])
    config = PipelineConfig(remote_enabled=True, embedding_dimensions=_DIMS, retry=_ONE_SHOT)
    _vectors, source = MerchantEmbedder(config, client_factory=stub.factory()).embed_many(["A"])
    assert source == "fallback"
