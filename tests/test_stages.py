"""Insight synthesis and the rule-based analysis stages."""

from __future__ import annotations

import pytest

from transaction_intelligence.categories import categorize_transactions
from transaction_intelligence.config import PipelineConfig
from transaction_intelligence.embeddings import MerchantEmbedder
from transaction_intelligence.insights import synthesize_insights
from transaction_intelligence.merchants import MerchantNormalizer
from transaction_intelligence.models import GROCERIES, OTHER
from transaction_intelligence.quality import score_data_quality
from transaction_intelligence.stages import (
    AnalysisContext,
    RiskAssessmentStage,
    SavingsOpportunityStage,
    SpendingSummaryStage,
    build_context,
)


def _context(rows: list[tuple[str, str, str]]) -> AnalysisContext:
    """Build a context from ``(date, description, amount)`` rows."""

    batch = [
        {"id": f"t{i}", "date": d, "description": desc, "amount": amt}
        for i, (d, desc, amt) in enumerate(rows)
    ]
    categorized = categorize_transactions(batch)
    normalizer = MerchantNormalizer(MerchantEmbedder(PipelineConfig()))
    return build_context("s1", categorized, normalizer.normalize(categorized))


# ---- Insight synthesis ---------------------------------------------------------


def test_all_other_batch_round_trips_through_quality_and_insights():
    rows = [("2025-01-01", "ACME LLC", "-5.00"), ("2025-01-02", "ZZ TOP 77", "-7.00")]
    batch = [
        {"id": f"t{i}", "date": d, "description": desc, "amount": amt}
        for i, (d, desc, amt) in enumerate(rows)
    ]
    categorized = categorize_transactions(batch)
    assert {ct.category for ct in categorized} == {OTHER}

    quality = score_data_quality(categorized)
    normalization = MerchantNormalizer(MerchantEmbedder(PipelineConfig())).normalize(categorized)
    records = synthesize_insights(categorized, normalization, [], [], quality)

    titles = [r.title for r in records]
    assert titles[0] == "Transaction Analysis Complete"
    assert "Low Categorization Confidence" in titles


def test_empty_batch_insight():
    ctx = _context([])
    records = synthesize_insights(
        ctx.categorized, ctx.normalization, ctx.patterns, ctx.anomalies, ctx.quality
    )
    assert [r.title for r in records] == ["No Transactions to Analyze"]


def test_recurring_payments_surface_as_an_insight():
    ctx = _context(
        [
            ("2025-01-05", "NETFLIX.COM", "-15.99"),
            ("2025-02-04", "NETFLIX.COM", "-15.99"),
            ("2025-03-06", "NETFLIX.COM", "-15.99"),
        ]
    )
    assert [p.merchant for p in ctx.patterns if p.is_recurring] == ["NETFLIX.COM"]
    records = synthesize_insights(
        ctx.categorized, ctx.normalization, ctx.patterns, ctx.anomalies, ctx.quality
    )
    recurring = next(r for r in records if r.title == "Recurring Payments Detected")
    assert recurring.key_numbers["Estimated Monthly Cost"] == "$15.99"


# ---- Spending ------------------------------------------------------------------


def test_spending_summary_totals_and_daily_average():
    ctx = _context(
        [
            ("2025-01-01", "ACME PAYROLL", "1000.00"),
            ("2025-01-01", "WHOLE FOODS", "-100.00"),
            ("2025-01-10", "STARBUCKS", "-20.00"),
        ]
    )
    outcome = SpendingSummaryStage().run(ctx)

    summary = outcome.metadata["summary"]
    assert summary["total_spent"] == pytest.approx(120.0)
    assert summary["total_income"] == pytest.approx(1000.0)
    assert summary["days_covered"] == 10
    assert summary["average_daily_spending"] == pytest.approx(12.0)
    assert summary["spending_efficiency_score"] == pytest.approx(0.88)
    assert outcome.metadata["insights"]["highest_spending_category"] == GROCERIES
    assert outcome.metadata["spending_by_category"][GROCERIES]["percentage_of_total"] == (
        pytest.approx(83.33)
    )
    assert outcome.insights[0].key_numbers["Top Category"] == GROCERIES


def test_spending_summary_without_outflows():
    ctx = _context([("2025-01-01", "PAYROLL", "500.00")])
    outcome = SpendingSummaryStage().run(ctx)
    assert outcome.insights[0].description == "No spending found in this batch."


# ---- Savings -------------------------------------------------------------------


def test_savings_finds_dining_reduction_and_positive_behaviour():
    ctx = _context(
        [
            ("2025-01-01", "ACME PAYROLL", "1000.00"),
            ("2025-01-03", "PIZZA PALACE", "-40.00"),
            ("2025-01-09", "BURGER BARN", "-60.00"),
        ]
    )
    outcome = SavingsOpportunityStage().run(ctx)

    titles = [r.title for r in outcome.insights]
    assert "Cook at Home More Often" in titles
    assert "Great Financial Behavior!" in titles
    head = outcome.insights[0]
    assert head.key_numbers["Monthly Savings Potential"] == "$25.00"
    assert head.key_numbers["Savings Score"] == 80


def test_savings_suggests_trimming_subscriptions():
    ctx = _context(
        [
            ("2025-01-02", "NETFLIX", "-15.99"),
            ("2025-01-03", "SPOTIFY USA", "-9.99"),
        ]
    )
    outcome = SavingsOpportunityStage().run(ctx)
    subs = outcome.metadata["subscription_analysis"]["subscriptions"]
    assert set(subs) == {"NETFLIX", "SPOTIFY USA"}
    trim = next(r for r in outcome.insights if r.title == "Review Your Subscriptions")
    assert trim.key_numbers["Monthly Savings"] == "$9.99"


# ---- Risk ----------------------------------------------------------------------


def test_risk_assessment_rules_and_stability_score():
    ctx = _context(
        [
            ("2025-01-01", "ACME PAYROLL", "100.00"),
            ("2025-01-02", "CITY GYM", "-50.00"),
            ("2025-01-09", "CITY GYM", "-50.00"),
            ("2025-01-16", "CITY GYM", "-50.00"),
            ("2025-01-20", "BEST BUY", "-400.00"),
        ]
    )
    outcome = RiskAssessmentStage().run(ctx)

    types = [r["type"] for r in outcome.metadata["risks"]]
    assert types == ["overspending", "large_transactions", "duplicate_charges"]
    summary = outcome.metadata["summary"]
    assert summary["financial_stability_score"] == 30
    assert outcome.metadata["risk_summary"]["overall_risk_level"] == "High"
    assert outcome.insights[0].sentiment == "negative"


def test_quiet_month_is_low_risk():
    ctx = _context(
        [
            ("2025-01-01", "ACME PAYROLL", "1000.00"),
            ("2025-01-02", "KROGER", "-40.00"),
            ("2025-01-05", "SHELL OIL", "-35.00"),
        ]
    )
    outcome = RiskAssessmentStage().run(ctx)
    assert outcome.metadata["risks"] == []
    assert outcome.metadata["summary"]["financial_stability_score"] == 100
    assert outcome.insights[0].key_numbers["Risk Level"] == "Low"
