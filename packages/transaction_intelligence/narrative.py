"""Narrative synthesis over the aggregated insights.

The pipeline ships :class:`TemplateNarrator`, a deterministic writer, so a run
is complete without a language model. Hosts can supply any object with a
``write`` method (for example one backed by an LLM); if it raises, the
orchestrator uses :data:`FALLBACK_NARRATIVE`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import DataQualityScore, InsightRecord

FALLBACK_NARRATIVE = (
    "Looks like I'm having a bit of trouble putting your financial summary into words "
    "right now. Your numbers are still here, and the individual insights above are "
    "complete. The important thing is that you're taking a look at your finances at "
    "all, so keep it up and check back soon."
)


class NarrativeWriter(Protocol):
    def write(self, insights: Sequence[InsightRecord], quality: DataQualityScore) -> str: ...


class TemplateNarrator:
    """Short plain-text summary: one line per insight, strongest news first."""

    max_lines = 6

    def write(self, insights: Sequence[InsightRecord], quality: DataQualityScore) -> str:
        if quality.total == 0:
            return "There were no transactions to look at this time."

        order = {"negative": 0, "positive": 1, "neutral": 2}
        ranked = sorted(insights, key=lambda r: order.get(r.sentiment, 3))
        lines = [f"Here's what stood out across your {quality.total} transactions:"]
        for record in ranked[: self.max_lines]:
            lines.append(f"- {record.title}: {record.description}")
        concerns = sum(1 for r in insights if r.sentiment == "negative")
        if concerns:
            lines.append(f"{concerns} item(s) deserve a closer look; start at the top.")
        else:
            lines.append("Nothing alarming here. Nice work.")
        return "\n".join(lines)


__all__ = ["FALLBACK_NARRATIVE", "NarrativeWriter", "TemplateNarrator"]
