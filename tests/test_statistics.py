"""Pattern detection, anomaly detection and data quality scoring."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from transaction_intelligence.anomalies import detect_anomalies
from transaction_intelligence.models import (
    GROCERIES,
    OTHER,
    CategorizedTransaction,
    Frequency,
    Transaction,
)
from transaction_intelligence.patterns import (
    coefficient_of_variation,
    detect_recurring_pattern,
    frequency_for,
)
from transaction_intelligence.quality import score_data_quality


def _ct(
    amount: float,
    *,
    tx_id: str = "t",
    category: str = GROCERIES,
    confidence: float = 0.9,
) -> CategorizedTransaction:
    tx = Transaction(id=tx_id, date="2025-01-01", description="SHOP", amount=str(amount))
    return CategorizedTransaction(
        transaction=tx, category=category, confidence=confidence, merchant_key="SHOP"
    )


def _every(days: int, n: int, start: date = date(2025, 1, 1)) -> list[date]:
    return [start + timedelta(days=days * i) for i in range(n)]


# ---- Patterns ------------------------------------------------------------------


def test_monthly_subscription_is_recurring():
    p = detect_recurring_pattern("NETFLIX", [100, 100, 100, 100], _every(30, 4))
    assert p.is_recurring is True
    assert p.frequency == Frequency.MONTHLY
    assert p.confidence > 0.8
    assert p.transaction_count == 4


def test_single_transaction_is_insufficient():
    p = detect_recurring_pattern("NETFLIX", [15.99], [date(2025, 1, 1)])
    assert p.is_recurring is False
    assert p.confidence == 0
    assert p.description == "Insufficient data"


def test_two_transactions_are_insufficient_for_the_date_check():
    p = detect_recurring_pattern("GYM", [30, 30], _every(30, 2))
    assert p.is_recurring is False
    assert p.confidence == 0


def test_weekly_with_small_amount_noise():
    p = detect_recurring_pattern("FARMERS", [-20.0, -21.0, -20.5, -20.0], _every(7, 4))
    assert p.is_recurring is True
    assert p.frequency == Frequency.WEEKLY


def test_irregular_dates_are_not_recurring():
    dates = [date(2025, 1, 1), date(2025, 1, 6), date(2025, 2, 15), date(2025, 2, 25)]
    p = detect_recurring_pattern("SHOP", [10, 10, 10, 10], dates)
    assert p.is_recurring is False
    assert p.description.startswith("Consistent amounts")


def test_variable_amounts_are_not_recurring():
    p = detect_recurring_pattern("SHOP", [10, 80, 25, 200], _every(30, 4))
    assert p.is_recurring is False


def test_regular_but_unlabelled_interval_has_no_frequency():
    p = detect_recurring_pattern("SHOP", [10, 10, 10], _every(45, 3))
    assert p.is_recurring is True
    assert p.frequency is None
    assert frequency_for(45) is None


def test_coefficient_of_variation_zero_mean_is_infinite():
    assert coefficient_of_variation([-1.0, 1.0]) == float("inf")


# ---- Anomalies -----------------------------------------------------------------


def test_single_large_outlier_is_flagged():
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate([20, 22, 19, 21, 500])]
    flags = detect_anomalies("SHOP", group)
    assert len(flags) == 1
    assert flags[0].transaction_id == "t4"
    assert flags[0].z_score > 2
    assert flags[0].confidence == pytest.approx(0.95)


def test_identical_amounts_produce_no_flags():
    group = [_ct(50, tx_id=f"t{i}") for i in range(3)]
    assert detect_anomalies("SHOP", group) == []


def test_singleton_group_produces_no_flags():
    assert detect_anomalies("SHOP", [_ct(10)]) == []


def test_outflow_outlier_is_flagged():
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate([-20, -22, -19, -21, -500])]
    flags = detect_anomalies("SHOP", group)
    assert [f.transaction_id for f in flags] == ["t4"]


def test_ordinary_price_variation_in_a_short_history_is_not_flagged():
    amounts = [-84.12, -80.50, -82.00, -91.30]
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate(amounts)]
    assert detect_anomalies("KROGER", group) == []


def test_three_member_history_flags_a_lone_outlier():
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate([20, 21, 500])]
    assert [f.transaction_id for f in detect_anomalies("SHOP", group)] == ["t2"]


def test_noisy_longer_history_without_outlier_is_not_flagged():
    amounts = [-84.12, -80.50, -82.00, -91.30, -86.40, -79.95, -88.10, -83.25]
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate(amounts)]
    assert detect_anomalies("KROGER", group) == []


def test_longer_history_uses_full_group_z_score():
    amounts = [20, 22, 19, 21, 20, 21, 500]
    group = [_ct(a, tx_id=f"t{i}") for i, a in enumerate(amounts)]
    flags = detect_anomalies("SHOP", group)
    assert [f.transaction_id for f in flags] == ["t6"]
    assert 2 < flags[0].z_score < 2.5
    assert flags[0].confidence == pytest.approx(flags[0].z_score / 3, abs=1e-4)


# ---- Data quality --------------------------------------------------------------


def test_empty_batch_scores_zero():
    q = score_data_quality([])
    assert q.score == 0
    assert q.total == 0


def test_confident_categorized_batch_scores_one():
    batch = [_ct(-10, tx_id=f"t{i}", confidence=0.95) for i in range(4)]
    assert score_data_quality(batch).score == pytest.approx(1.0)


def test_mixed_batch():
    batch = [_ct(-10, tx_id="a", confidence=0.9), _ct(-10, tx_id="b", category=OTHER, confidence=0.5)]
    q = score_data_quality(batch)
    assert q.completeness == pytest.approx(0.5)
    assert q.categorization_rate == pytest.approx(0.5)
    assert q.score == pytest.approx(0.5)
