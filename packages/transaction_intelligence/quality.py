"""Batch-level data quality score."""

from __future__ import annotations

from collections.abc import Sequence

from .models import OTHER, CategorizedTransaction, DataQualityScore

HIGH_CONFIDENCE = 0.8


def score_data_quality(batch: Sequence[CategorizedTransaction]) -> DataQualityScore:
    """Mean of completeness (share above 0.8 confidence) and categorization rate.

    An empty batch scores 0 on every component.
    """

    total = len(batch)
    if total == 0:
        return DataQualityScore(score=0.0, completeness=0.0, categorization_rate=0.0, total=0)
    completeness = sum(1 for ct in batch if ct.confidence > HIGH_CONFIDENCE) / total
    categorized = sum(1 for ct in batch if ct.category != OTHER) / total
    return DataQualityScore(
        score=(completeness + categorized) / 2,
        completeness=completeness,
        categorization_rate=categorized,
        total=total,
    )


__all__ = ["score_data_quality"]
