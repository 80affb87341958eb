"""Turn categorization, merchant and statistics results into InsightRecords."""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    AnomalyFlag,
    CategorizedTransaction,
    DataQualityScore,
    Frequency,
    InsightRecord,
    MerchantNormalization,
    RecurringPattern,
)

LOW_QUALITY = 0.5

# Occurrences per month for each frequency; unknown cadence counts once.
MONTHLY_FACTOR: dict[Frequency | None, float] = {
    Frequency.DAILY: 30.0,
    Frequency.WEEKLY: 52.0 / 12.0,
    Frequency.MONTHLY: 1.0,
    Frequency.QUARTERLY: 1.0 / 3.0,
    Frequency.YEARLY: 1.0 / 12.0,
    None: 1.0,
}


def monthly_cost(pattern: RecurringPattern) -> float:
    return abs(pattern.mean_amount) * MONTHLY_FACTOR[pattern.frequency]


def _money(value: float) -> str:
    return f"${value:,.2f}"


def synthesize_insights(
    categorized: Sequence[CategorizedTransaction],
    normalization: MerchantNormalization,
    patterns: Sequence[RecurringPattern],
    anomalies: Sequence[AnomalyFlag],
    quality: DataQualityScore,
) -> list[InsightRecord]:
    """Summarize one categorized batch.

    Always returns at least one record, including for an empty batch or a
    batch where every transaction landed in ``Other``.
    """

    if not categorized:
        return [
            InsightRecord(
                title="No Transactions to Analyze",
                description="The batch was empty, so there was nothing to categorize.",
                sentiment="neutral",
                key_numbers={"Total Transactions": 0, "Data Quality Score": 0},
            )
        ]

    categories = list(dict.fromkeys(ct.category for ct in categorized))
    records = [
        InsightRecord(
            title="Transaction Analysis Complete",
            description=(
                f"Categorized {len(categorized)} transactions across {len(categories)} "
                f"categories and {len(normalization.clusters)} merchants."
            ),
            sentiment="positive" if quality.score >= LOW_QUALITY else "neutral",
            key_numbers={
                "Total Transactions": len(categorized),
                "Categories Found": len(categories),
                "Merchants": len(normalization.clusters),
                "Data Quality Score": round(quality.score * 100),
            },
        )
    ]

    recurring = [p for p in patterns if p.is_recurring]
    if recurring:
        names = ", ".join(
            f"{p.merchant} ({p.frequency or 'regular'})" for p in recurring[:5]
        )
        more = f" and {len(recurring) - 5} more" if len(recurring) > 5 else ""
        records.append(
            InsightRecord(
                title="Recurring Payments Detected",
                description=f"Found {len(recurring)} recurring payments: {names}{more}.",
                sentiment="neutral",
                key_numbers={
                    "Recurring Merchants": len(recurring),
                    "Estimated Monthly Cost": _money(sum(monthly_cost(p) for p in recurring)),
                },
                recommendations=("Review recurring charges and cancel the ones you no longer use",),
            )
        )

    if anomalies:
        largest = max(anomalies, key=lambda a: abs(a.amount))
        records.append(
            InsightRecord(
                title="Unusual Transactions Flagged",
                description=(
                    f"{len(anomalies)} transactions stand out from their merchant's usual "
                    f"amounts. The largest is {_money(abs(largest.amount))} at {largest.merchant}."
                ),
                sentiment="negative",
                key_numbers={
                    "Flagged Transactions": len(anomalies),
                    "Largest Flagged Amount": _money(abs(largest.amount)),
                },
                recommendations=("Check flagged transactions against your receipts",),
            )
        )

    if quality.score < LOW_QUALITY:
        records.append(
            InsightRecord(
                title="Low Categorization Confidence",
                description=(
                    f"Only {quality.categorization_rate:.0%} of transactions matched a "
                    "category; results may be incomplete."
                ),
                sentiment="neutral",
                key_numbers={
                    "Completeness": round(quality.completeness * 100),
                    "Categorization Rate": round(quality.categorization_rate * 100),
                },
                recommendations=("Use exports with fuller merchant descriptions",),
            )
        )

    return records


__all__ = ["MONTHLY_FACTOR", "monthly_cost", "synthesize_insights"]
