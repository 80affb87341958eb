"""Analysis stages.

Every stage after categorization satisfies :class:`AnalysisStage`: it has a
``name`` (used for status reporting), a human ``label`` (used for the
degraded record when it fails) and ``run(context) -> StageOutcome``. Stages
read the shared :class:`AnalysisContext` and never see each other's output,
so the orchestrator can run them concurrently in any order.

:class:`CategorizationStage` is the prerequisite that *builds* the context.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from .anomalies import detect_anomalies
from .categories import categorize_transactions
from .classifier import TextClassifier
from .insights import MONTHLY_FACTOR, synthesize_insights
from .merchants import MerchantNormalizer, extract_merchant_key
from .models import (
    DINING,
    INVESTMENTS,
    OTHER,
    SUBSCRIPTIONS,
    AnomalyFlag,
    CategorizedTransaction,
    DataQualityScore,
    InsightRecord,
    MerchantCluster,
    MerchantNormalization,
    RecurringPattern,
    StageOutcome,
    Transaction,
)
from .patterns import detect_recurring_pattern
from .quality import score_data_quality


@dataclass(frozen=True, slots=True)
class AnalysisContext:
    """Immutable per-run input shared by the concurrent stages."""

    session_id: str
    categorized: tuple[CategorizedTransaction, ...]
    normalization: MerchantNormalization
    patterns: tuple[RecurringPattern, ...]
    anomalies: tuple[AnomalyFlag, ...]
    quality: DataQualityScore

    @property
    def outflows(self) -> list[CategorizedTransaction]:
        return [ct for ct in self.categorized if ct.amount < 0]

    @property
    def total_spent(self) -> float:
        return sum(-ct.amount for ct in self.categorized if ct.amount < 0)

    @property
    def total_income(self) -> float:
        return sum(ct.amount for ct in self.categorized if ct.amount > 0)

    @property
    def span_days(self) -> int:
        """Inclusive number of days covered by the batch (0 when empty)."""

        if not self.categorized:
            return 0
        dates = [ct.date for ct in self.categorized]
        return (max(dates) - min(dates)).days + 1


class AnalysisStage(Protocol):
    name: str
    label: str

    def run(self, context: AnalysisContext) -> StageOutcome: ...


def _money(value: float) -> str:
    return f"${value:,.2f}"


# ---------------------------------------------------------------------------
# Categorization (prerequisite)
# ---------------------------------------------------------------------------


def build_context(
    session_id: str,
    categorized: Sequence[CategorizedTransaction],
    normalization: MerchantNormalization,
) -> AnalysisContext:
    """Run pattern, anomaly and quality analysis over a normalized batch.

    A pattern is evaluated for every canonical merchant with at least two
    transactions; single-transaction merchants cannot recur.
    """

    patterns: list[RecurringPattern] = []
    anomalies: list[AnomalyFlag] = []
    for merchant, group in normalization.groups.items():
        if len(group) >= 2:
            patterns.append(
                detect_recurring_pattern(
                    merchant,
                    [ct.amount for ct in group],
                    [ct.date for ct in group],
                )
            )
        anomalies.extend(detect_anomalies(merchant, group))
    return AnalysisContext(
        session_id=session_id,
        categorized=tuple(categorized),
        normalization=normalization,
        patterns=tuple(patterns),
        anomalies=tuple(anomalies),
        quality=score_data_quality(categorized),
    )


def degraded_context(session_id: str, batch: Sequence[Transaction]) -> AnalysisContext:
    """Context used when categorization fails: every transaction is ``Other``
    with zero confidence and every merchant key stands alone."""

    categorized = [
        CategorizedTransaction(
            transaction=tx,
            category=OTHER,
            confidence=0.0,
            merchant_key=extract_merchant_key(tx.description),
        )
        for tx in batch
    ]
    keys = list(dict.fromkeys(ct.merchant_key for ct in categorized))
    groups: dict[str, list[CategorizedTransaction]] = {k: [] for k in keys}
    for ct in categorized:
        groups[ct.merchant_key].append(ct)
    normalization = MerchantNormalization(
        clusters=tuple(MerchantCluster(canonical=k, members=(k,)) for k in keys),
        canonical_by_key={k: k for k in keys},
        groups={k: tuple(v) for k, v in groups.items()},
        vector_source="fallback",
    )
    return AnalysisContext(
        session_id=session_id,
        categorized=tuple(categorized),
        normalization=normalization,
        patterns=(),
        anomalies=(),
        quality=score_data_quality(categorized),
    )


class CategorizationStage:
    """Categorize, normalize merchants and derive patterns/anomalies/quality."""

    name = "categorization"
    label = "Transaction Analysis"

    def __init__(
        self,
        normalizer: MerchantNormalizer,
        *,
        classifier: TextClassifier | None = None,
        concurrency: int = 4,
    ) -> None:
        self._normalizer = normalizer
        self._classifier = classifier
        self._concurrency = concurrency

    def run(
        self, session_id: str, batch: Sequence[Transaction]
    ) -> tuple[AnalysisContext, StageOutcome]:
        categorized = categorize_transactions(
            batch, classifier=self._classifier, concurrency=self._concurrency
        )
        normalization = self._normalizer.normalize(categorized)
        context = build_context(session_id, categorized, normalization)
        insights = synthesize_insights(
            context.categorized,
            context.normalization,
            context.patterns,
            context.anomalies,
            context.quality,
        )
        counts = Counter(ct.category for ct in categorized)
        outcome = StageOutcome(
            stage=self.name,
            insights=tuple(insights),
            metadata={
                "total_transactions": len(categorized),
                "categories_found": list(counts),
                "category_counts": dict(counts),
                "merchant_count": len(normalization.clusters),
                "vector_source": normalization.vector_source,
                "data_quality_score": context.quality.score,
            },
        )
        return context, outcome


# ---------------------------------------------------------------------------
# Spending summary
# ---------------------------------------------------------------------------


class SpendingSummaryStage:
    name = "spending"
    label = "Spending Analysis"

    def run(self, context: AnalysisContext) -> StageOutcome:
        totals: dict[str, float] = defaultdict(float)
        counts: Counter[str] = Counter()
        for ct in context.outflows:
            totals[ct.category] += -ct.amount
            counts[ct.category] += 1

        spent = context.total_spent
        income = context.total_income
        days = context.span_days
        daily_average = spent / days if days else 0.0
        efficiency = (income - spent) / income if income > 0 else 0.0

        breakdown = {
            category: {
                "total_amount": round(total, 2),
                "transaction_count": counts[category],
                "average_transaction": round(total / counts[category], 2),
                "percentage_of_total": round(total / spent * 100, 2) if spent else 0.0,
            }
            for category, total in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        }
        top_by_amount = next(iter(breakdown), "None")
        top_by_count = counts.most_common(1)[0][0] if counts else "None"

        if spent:
            description = (
                f"Analyzed {_money(spent)} in spending across {len(breakdown)} categories "
                f"over {days} days."
            )
            recommendations: tuple[str, ...] | None = (
                f"Consider reducing {top_by_amount} spending",
                "Track daily expenses more closely",
            )
        else:
            description = "No spending found in this batch."
            recommendations = None

        insight = InsightRecord(
            title="Spending Analysis Complete",
            description=description,
            sentiment="positive" if efficiency >= 0 else "negative",
            key_numbers={
                "Total Spent": _money(spent),
                "Daily Average": _money(daily_average),
                "Top Category": top_by_amount,
            },
            recommendations=recommendations,
        )
        return StageOutcome(
            stage=self.name,
            insights=(insight,),
            metadata={
                "spending_by_category": breakdown,
                "insights": {
                    "highest_spending_category": top_by_amount,
                    "most_frequent_category": top_by_count,
                },
                "summary": {
                    "total_spent": round(spent, 2),
                    "total_income": round(income, 2),
                    "days_covered": days,
                    "average_daily_spending": round(daily_average, 2),
                    "category_count": len(breakdown),
                    "spending_efficiency_score": round(efficiency, 4),
                },
            },
        )


# ---------------------------------------------------------------------------
# Savings opportunities
# ---------------------------------------------------------------------------

DINING_REDUCTION = 0.25


class SavingsOpportunityStage:
    """Rule-based savings opportunities and positive behaviours.

    Monthly figures divide batch totals by the number of 30-day months the
    batch covers (at least one).
    """

    name = "savings"
    label = "Savings Analysis"

    def _subscriptions(self, context: AnalysisContext) -> dict[str, float]:
        """Monthly cost per subscription merchant, keyed by canonical name."""

        recurring = {p.merchant: p for p in context.patterns if p.is_recurring and p.mean_amount < 0}
        out: dict[str, float] = {}
        for merchant, group in context.normalization.groups.items():
            outflows = [ct for ct in group if ct.amount < 0]
            if not outflows:
                continue
            pattern = recurring.get(merchant)
            is_sub = any(ct.category == SUBSCRIPTIONS for ct in outflows)
            if pattern is not None:
                out[merchant] = abs(pattern.mean_amount) * MONTHLY_FACTOR[pattern.frequency]
            elif is_sub:
                out[merchant] = sum(-ct.amount for ct in outflows) / len(outflows)
        return out

    def run(self, context: AnalysisContext) -> StageOutcome:
        months = max(1.0, context.span_days / 30.0)
        spent = context.total_spent
        income = context.total_income
        dining = sum(-ct.amount for ct in context.outflows if ct.category == DINING)
        invested = sum(-ct.amount for ct in context.outflows if ct.category == INVESTMENTS)
        subscriptions = self._subscriptions(context)

        opportunities: list[dict[str, Any]] = []
        if dining > 0:
            monthly = dining / months * DINING_REDUCTION
            opportunities.append(
                {
                    "type": "dining_out",
                    "title": "Cook at Home More Often",
                    "description": (
                        f"Dining out cost {_money(dining / months)} a month. "
                        f"Cutting it by a quarter saves {_money(monthly)} a month."
                    ),
                    "potential_monthly_savings": round(monthly, 2),
                    "difficulty": "medium",
                    "action_required": "Plan a few more meals at home each week",
                }
            )
        if len(subscriptions) >= 2:
            cheapest, cost = min(subscriptions.items(), key=lambda kv: kv[1])
            opportunities.append(
                {
                    "type": "subscription",
                    "title": "Review Your Subscriptions",
                    "description": (
                        f"You pay for {len(subscriptions)} recurring services. Dropping "
                        f"{cheapest} alone saves {_money(cost)} a month."
                    ),
                    "potential_monthly_savings": round(cost, 2),
                    "difficulty": "easy",
                    "action_required": "Cancel subscriptions you have not used this month",
                }
            )

        behaviours: list[dict[str, str]] = []
        if income > spent:
            behaviours.append(
                {
                    "behavior": f"You spent {_money(spent)} against {_money(income)} of income.",
                    "encouragement": "Keep spending below what you earn",
                }
            )
        if invested > 0:
            behaviours.append(
                {
                    "behavior": f"You put {_money(invested)} into savings or investments.",
                    "encouragement": "Regular contributions add up over time",
                }
            )

        score = 0.4
        if income > spent:
            score += 0.3
        if invested > 0:
            score += 0.2
        if len(subscriptions) <= 3:
            score += 0.1
        score = min(1.0, score)

        monthly_total = sum(o["potential_monthly_savings"] for o in opportunities)
        insights = [
            InsightRecord(
                title="Savings Analysis Complete",
                description=(
                    f"Found {len(opportunities)} saving opportunities and "
                    f"{len(behaviours)} positive behaviors."
                ),
                sentiment="positive",
                key_numbers={
                    "Monthly Savings Potential": _money(monthly_total),
                    "Yearly Savings Potential": _money(monthly_total * 12),
                    "Savings Score": round(score * 100),
                },
            )
        ]
        for o in opportunities:
            insights.append(
                InsightRecord(
                    title=o["title"],
                    description=o["description"],
                    sentiment="positive" if o["difficulty"] == "easy" else "neutral",
                    key_numbers={
                        "Monthly Savings": _money(o["potential_monthly_savings"]),
                        "Yearly Savings": _money(o["potential_monthly_savings"] * 12),
                    },
                    recommendations=(o["action_required"],),
                )
            )
        for b in behaviours:
            insights.append(
                InsightRecord(
                    title="Great Financial Behavior!",
                    description=b["behavior"],
                    sentiment="positive",
                    recommendations=(b["encouragement"],),
                )
            )

        return StageOutcome(
            stage=self.name,
            insights=tuple(insights),
            metadata={
                "saving_opportunities": opportunities,
                "positive_behaviors": behaviours,
                "subscription_analysis": {
                    "total_monthly_subscriptions": round(sum(subscriptions.values()), 2),
                    "subscriptions": {k: round(v, 2) for k, v in subscriptions.items()},
                },
                "summary": {
                    "total_potential_monthly_savings": round(monthly_total, 2),
                    "total_potential_yearly_savings": round(monthly_total * 12, 2),
                    "savings_score": round(score, 2),
                    "positive_behaviors_count": len(behaviours),
                },
            },
        )


# ---------------------------------------------------------------------------
# Risk assessment
# ---------------------------------------------------------------------------

LARGE_TRANSACTION = 200.0
DUPLICATE_MIN_COUNT = 3
UNUSUAL_MULTIPLIER = 3.0


class RiskAssessmentStage:
    name = "risk"
    label = "Risk Assessment"

    def _risks(self, context: AnalysisContext) -> list[dict[str, str]]:
        outflows = context.outflows
        spent = context.total_spent
        income = context.total_income
        risks: list[dict[str, str]] = []

        if spent > income:
            risks.append(
                {
                    "type": "overspending",
                    "severity": "high",
                    "title": "Spending Exceeds Income",
                    "description": f"Expenses ({_money(spent)}) exceed income ({_money(income)})",
                    "recommendation": "Create a budget and reduce expenses immediately",
                }
            )

        large = [ct for ct in outflows if -ct.amount > LARGE_TRANSACTION]
        if large:
            risks.append(
                {
                    "type": "large_transactions",
                    "severity": "medium",
                    "title": "Large Transactions Detected",
                    "description": f"Found {len(large)} transactions over {_money(LARGE_TRANSACTION)}",
                    "recommendation": "Review large purchases for necessity and budget impact",
                }
            )

        by_amount = Counter(ct.transaction.amount.copy_abs() for ct in outflows)
        for amount, n in by_amount.items():
            if n >= DUPLICATE_MIN_COUNT:
                risks.append(
                    {
                        "type": "duplicate_charges",
                        "severity": "high",
                        "title": "Potential Duplicate Charges",
                        "description": f"Found {n} transactions with identical amount {_money(float(amount))}",
                        "recommendation": "Review transactions for duplicate charges",
                    }
                )

        if outflows:
            average = spent / len(outflows)
            unusual = [ct for ct in outflows if -ct.amount > average * UNUSUAL_MULTIPLIER]
            if unusual:
                risks.append(
                    {
                        "type": "unusual_spending",
                        "severity": "medium",
                        "title": "Unusual Spending Patterns",
                        "description": f"Found {len(unusual)} transactions significantly above average",
                        "recommendation": "Review unusual transactions for accuracy",
                    }
                )

        if context.anomalies:
            merchants = ", ".join(dict.fromkeys(a.merchant for a in context.anomalies))
            risks.append(
                {
                    "type": "statistical_anomaly",
                    "severity": "medium",
                    "title": "Statistical Outliers Detected",
                    "description": (
                        f"{len(context.anomalies)} transactions are far from the usual amount "
                        f"for {merchants}"
                    ),
                    "recommendation": "Confirm these charges with the merchant",
                }
            )
        return risks

    def run(self, context: AnalysisContext) -> StageOutcome:
        risks = self._risks(context)
        high = sum(1 for r in risks if r["severity"] == "high")
        medium = sum(1 for r in risks if r["severity"] == "medium")
        if high:
            level = "High"
        elif len(risks) > 2:
            level = "Medium"
        else:
            level = "Low"
        stability = max(0, 100 - len(risks) * 10 - high * 20)

        insights = [
            InsightRecord(
                title="Risk Assessment Complete",
                description=(
                    f"Identified {len(risks)} potential risks with {high} high-priority items."
                ),
                sentiment="negative" if high else "positive",
                key_numbers={
                    "Risk Level": level,
                    "High Priority Risks": high,
                    "Total Risks": len(risks),
                    "Stability Score": stability,
                },
            )
        ]
        insights.extend(
            InsightRecord(
                title=r["title"],
                description=r["description"],
                sentiment="negative" if r["severity"] == "high" else "neutral",
                recommendations=(r["recommendation"],),
            )
            for r in risks
        )
        return StageOutcome(
            stage=self.name,
            insights=tuple(insights),
            metadata={
                "risks": risks,
                "risk_summary": {
                    "overall_risk_level": level,
                    "high_risk_count": high,
                    "medium_risk_count": medium,
                },
                "recommendations": [r["recommendation"] for r in risks],
                "summary": {
                    "total_income": round(context.total_income, 2),
                    "total_expenses": round(context.total_spent, 2),
                    "risk_count": len(risks),
                    "financial_stability_score": stability,
                },
            },
        )


def default_stages() -> list[AnalysisStage]:
    """The concurrent stages in aggregation order."""

    return [SpendingSummaryStage(), SavingsOpportunityStage(), RiskAssessmentStage()]


__all__ = [
    "AnalysisContext",
    "AnalysisStage",
    "CategorizationStage",
    "RiskAssessmentStage",
    "SavingsOpportunityStage",
    "SpendingSummaryStage",
    "build_context",
    "default_stages",
    "degraded_context",
]
