"""Recurring-payment detection for one merchant's history."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

import numpy as np

from .models import Frequency, RecurringPattern

AMOUNT_CV_LIMIT = 0.1
INTERVAL_CV_LIMIT = 0.2
INSUFFICIENT_DATA = "Insufficient data"

# Inclusive mean-interval ranges, in days.
_FREQUENCY_BANDS: tuple[tuple[float, float, Frequency], ...] = (
    (1, 2, Frequency.DAILY),
    (6, 8, Frequency.WEEKLY),
    (28, 31, Frequency.MONTHLY),
    (89, 92, Frequency.QUARTERLY),
    (364, 366, Frequency.YEARLY),
)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population standard deviation over ``|mean|``; ``inf`` when the mean is 0."""

    arr = np.asarray(values, dtype=np.float64)
    mean = float(arr.mean())
    if mean == 0:
        return float("inf")
    return float(arr.std(ddof=0)) / abs(mean)


def frequency_for(mean_interval_days: float) -> Frequency | None:
    for low, high, freq in _FREQUENCY_BANDS:
        if low <= mean_interval_days <= high:
            return freq
    return None


def detect_recurring_pattern(
    merchant: str,
    amounts: Sequence[float],
    dates: Sequence[date],
) -> RecurringPattern:
    """Decide whether ``amounts``/``dates`` look like a recurring payment.

    Amounts are *consistent* when their coefficient of variation is below 0.1;
    dates are *regular* when the coefficient of variation of the gaps between
    consecutive (sorted) dates is below 0.2. Both must hold for
    ``is_recurring``. Each check contributes a confidence of ``1 - cv``
    floored at 0, and the pattern's confidence is their mean.

    Fewer than 2 amounts or fewer than 3 dates gives a non-recurring pattern
    with confidence 0 and the description ``"Insufficient data"``.
    """

    mean_amount = float(np.mean(amounts)) if len(amounts) else 0.0
    count = len(amounts)
    if len(amounts) < 2 or len(dates) < 3:
        return RecurringPattern(
            merchant=merchant,
            is_recurring=False,
            frequency=None,
            confidence=0.0,
            mean_amount=mean_amount,
            transaction_count=count,
            description=INSUFFICIENT_DATA,
        )

    amount_cv = coefficient_of_variation(amounts)
    consistent = amount_cv < AMOUNT_CV_LIMIT
    amount_conf = max(0.0, 1.0 - amount_cv)

    ordered = sorted(dates)
    gaps = [float((b - a).days) for a, b in zip(ordered, ordered[1:])]
    mean_gap = float(np.mean(gaps))
    gap_cv = coefficient_of_variation(gaps)
    regular = gap_cv < INTERVAL_CV_LIMIT
    date_conf = max(0.0, 1.0 - gap_cv)
    frequency = frequency_for(mean_gap)

    amount_text = "Consistent amounts" if consistent else "Variable amounts"
    if regular:
        date_text = f"Regular {frequency or 'pattern'}"
    else:
        date_text = "Irregular pattern"

    return RecurringPattern(
        merchant=merchant,
        is_recurring=consistent and regular,
        frequency=frequency,
        confidence=(amount_conf + date_conf) / 2,
        mean_amount=mean_amount,
        transaction_count=count,
        description=f"{amount_text}, {date_text.lower()}",
    )


__all__ = [
    "INSUFFICIENT_DATA",
    "coefficient_of_variation",
    "detect_recurring_pattern",
    "frequency_for",
]
