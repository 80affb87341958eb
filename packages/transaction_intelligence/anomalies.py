"""Amount outliers within one merchant's transactions.

Amounts are scored against the merchant's mean and population standard
deviation, ``z = |amount - mean| / std``, and flagged above 2.

With population statistics a single departure from ``n - 1`` otherwise equal
amounts reaches at most ``z = sqrt(n - 1)``, so in a history of five or fewer
transactions the rule above can never fire. Short histories are therefore
handled separately: only the transaction with the largest z is considered,
it is scored against the *other* transactions (leave-one-out), and it must
clear a much stricter threshold. Ordinary price variation in a handful of
grocery runs stays unflagged while one 500 among amounts near 20 does not.

A group whose amounts are all identical yields no flags.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from .models import AnomalyFlag, CategorizedTransaction

Z_THRESHOLD = 2.0
MAX_CONFIDENCE = 0.95
# Largest group size whose z-score ceiling, sqrt(n - 1), does not exceed Z_THRESHOLD.
SHORT_HISTORY = 5
SHORT_HISTORY_Z_THRESHOLD = 10.0


def _short_history_outlier(
    amounts: np.ndarray, z_scores: np.ndarray
) -> tuple[int, float, float] | None:
    """``(index, reference mean, z)`` for the single dominant outlier, if any."""

    idx = int(np.argmax(z_scores))
    others = np.delete(amounts, idx)
    if others.size < 2:
        return None
    spread = float(others.std(ddof=0))
    if spread == 0:
        return None
    mean = float(others.mean())
    z = abs(float(amounts[idx]) - mean) / spread
    if z <= SHORT_HISTORY_Z_THRESHOLD:
        return None
    return idx, mean, z


def detect_anomalies(
    merchant: str,
    transactions: Sequence[CategorizedTransaction],
) -> list[AnomalyFlag]:
    """Flag transactions whose amount lies far outside the merchant's usual range.

    Confidence is ``min(0.95, z / 3)``. Flags keep input order.
    """

    amounts = np.asarray([ct.amount for ct in transactions], dtype=np.float64)
    if amounts.size < 2:
        return []
    spread = float(amounts.std(ddof=0))
    if spread == 0:
        return []
    mean = float(amounts.mean())
    z_scores = np.abs(amounts - mean) / spread

    if amounts.size > SHORT_HISTORY:
        hits = [(int(i), mean, float(z_scores[i])) for i in np.flatnonzero(z_scores > Z_THRESHOLD)]
    else:
        outlier = _short_history_outlier(amounts, z_scores)
        hits = [outlier] if outlier is not None else []

    flags: list[AnomalyFlag] = []
    for i, reference, z in hits:
        ct = transactions[i]
        flags.append(
            AnomalyFlag(
                transaction_id=ct.id,
                merchant=merchant,
                amount=ct.amount,
                z_score=round(z, 4),
                confidence=min(MAX_CONFIDENCE, z / 3),
                reason=(
                    f"{abs(ct.amount):.2f} at {merchant} is {z:.1f} standard deviations "
                    f"from the usual {abs(reference):.2f}"
                ),
            )
        )
    return flags


__all__ = ["detect_anomalies"]
