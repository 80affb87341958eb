"""Data models for ``transaction_intelligence``.

Two families live here:

- pydantic models for data that crosses the package boundary and must be
  validated (:class:`Transaction` from the parsing collaborator,
  :class:`ClassifierSignal` from the remote classifier);
- frozen ``dataclass`` records for everything the pipeline derives
  (categorized transactions, clusters, patterns, flags, insights, stage
  outcomes).

Nothing in this module performs I/O.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------

GROCERIES = "Groceries & Food"
DINING = "Dining & Restaurants"
TRANSPORTATION = "Transportation"
UTILITIES = "Utilities & Bills"
ENTERTAINMENT = "Entertainment & Recreation"
SHOPPING = "Shopping & Retail"
HEALTHCARE = "Healthcare & Medical"
INSURANCE = "Insurance"
SUBSCRIPTIONS = "Subscriptions & Services"
TRAVEL = "Travel & Hotels"
EDUCATION = "Education"
INVESTMENTS = "Investments & Savings"
INCOME = "Income & Deposits"
TRANSFERS = "Transfers"
OTHER = "Other"

TAXONOMY: tuple[str, ...] = (
    GROCERIES,
    DINING,
    TRANSPORTATION,
    UTILITIES,
    ENTERTAINMENT,
    SHOPPING,
    HEALTHCARE,
    INSURANCE,
    SUBSCRIPTIONS,
    TRAVEL,
    EDUCATION,
    INVESTMENTS,
    INCOME,
    TRANSFERS,
    OTHER,
)

type Sentiment = Literal["positive", "neutral", "negative"]
type KeyNumber = float | int | str


class Frequency(StrEnum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"


class RunStep(StrEnum):
    """Orchestrator state machine markers."""

    DATA_EXTRACTION = "data_extraction"
    ANALYSIS = "analysis"
    PERSONALITY_TRANSFORM = "personality_transform"
    COMPLETE = "complete"
    ERROR = "error"


class StageStatus(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Boundary models (validated)
# ---------------------------------------------------------------------------


class Transaction(BaseModel):
    """Immutable input record produced by the parsing collaborator.

    Only ``id``, ``date``, ``description`` and ``amount`` are read; any other
    keys on the incoming mapping are ignored. ``amount`` is signed: positive
    values are inflows, negative values are outflows.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )

    id: str
    date: dt.date
    description: str
    amount: Decimal

    @field_validator("amount")
    @classmethod
    def _amount_is_finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v


class ClassifierSignal(BaseModel):
    """Output of the text-classification capability for one description."""

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    label: str
    confidence: float
    scores: dict[str, float] = {}
    source: Literal["remote", "fallback"] = "remote"

    @field_validator("label")
    @classmethod
    def _normalize_label(cls, v: str) -> str:
        s = v.strip().lower()
        if not s:
            raise ValueError("label must be non-empty")
        return s

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        fv = float(v)
        if 0.0 <= fv <= 1.0:
            return fv
        raise ValueError("confidence must be within [0,1]")


# ---------------------------------------------------------------------------
# Derived records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategorizedTransaction:
    """A transaction annotated with its category and merchant key.

    The wrapped :class:`Transaction` is never modified. ``classifier_label``
    is set only when a classifier signal took part in the decision.
    """

    transaction: Transaction
    category: str
    confidence: float
    merchant_key: str
    classifier_label: str | None = None

    def __post_init__(self) -> None:
        if self.category not in TAXONOMY:
            raise ValueError(f"category not in taxonomy: {self.category!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0,1], got {self.confidence!r}")

    @property
    def id(self) -> str:
        return self.transaction.id

    @property
    def amount(self) -> float:
        return float(self.transaction.amount)

    @property
    def date(self) -> date:
        return self.transaction.date

    @property
    def description(self) -> str:
        return self.transaction.description


@dataclass(frozen=True, slots=True)
class MerchantCluster:
    """Merchant keys judged to denote the same payee.

    ``members`` keeps encounter order; ``canonical`` is always one of them.
    """

    canonical: str
    members: tuple[str, ...]

    def __post_init__(self) -> None:
        if self.canonical not in self.members:
            raise ValueError("canonical name must be a cluster member")


@dataclass(frozen=True, slots=True)
class MerchantNormalization:
    clusters: tuple[MerchantCluster, ...]
    canonical_by_key: Mapping[str, str]
    groups: Mapping[str, tuple[CategorizedTransaction, ...]]
    vector_source: Literal["remote", "fallback"]

    def canonical_for(self, merchant_key: str) -> str:
        return self.canonical_by_key.get(merchant_key, merchant_key)


@dataclass(frozen=True, slots=True)
class RecurringPattern:
    merchant: str
    is_recurring: bool
    frequency: Frequency | None
    confidence: float
    mean_amount: float
    transaction_count: int
    description: str


@dataclass(frozen=True, slots=True)
class AnomalyFlag:
    transaction_id: str
    merchant: str
    amount: float
    z_score: float
    confidence: float
    reason: str


@dataclass(frozen=True, slots=True)
class DataQualityScore:
    score: float
    completeness: float
    categorization_rate: float
    total: int


@dataclass(frozen=True, slots=True)
class InsightRecord:
    """The uniform output unit consumed downstream and by the UI."""

    title: str
    description: str
    sentiment: Sentiment = "neutral"
    key_numbers: Mapping[str, KeyNumber] | None = None
    recommendations: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class StageOutcome:
    """Captured result of one stage: insights plus raw metadata.

    ``degraded`` marks a substituted outcome after the stage raised; ``error``
    then carries a short description of the failure.
    """

    stage: str
    insights: tuple[InsightRecord, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None
    degraded: bool = False


@dataclass(slots=True)
class OrchestratorState:
    """Mutable per-run state; discarded once the result is handed back."""

    session_id: str
    current_step: RunStep = RunStep.DATA_EXTRACTION
    outcomes: list[StageOutcome] = field(default_factory=list)
    error: str | None = None
    narrative: str | None = None


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Everything one run hands to the narrative/UI and persistence callers."""

    session_id: str
    state: OrchestratorState
    insights: tuple[InsightRecord, ...]
    categorized: tuple[CategorizedTransaction, ...]
    quality: DataQualityScore
    patterns: tuple[RecurringPattern, ...]
    anomalies: tuple[AnomalyFlag, ...]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation (dates/decimals as strings)."""

        return {
            "session_id": self.session_id,
            "current_step": str(self.state.current_step),
            "error": self.state.error,
            "narrative": self.state.narrative,
            "stages": [_jsonable(o) for o in self.state.outcomes],
            "insights": [_jsonable(i) for i in self.insights],
            "categorized": [
                {
                    "id": ct.id,
                    "date": ct.date.isoformat(),
                    "description": ct.description,
                    "amount": str(ct.transaction.amount),
                    "category": ct.category,
                    "confidence": ct.confidence,
                    "merchant_key": ct.merchant_key,
                    "classifier_label": ct.classifier_label,
                }
                for ct in self.categorized
            ],
            "quality": _jsonable(self.quality),
            "patterns": [_jsonable(p) for p in self.patterns],
            "anomalies": [_jsonable(a) for a in self.anomalies],
        }


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, StrEnum):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


type Transactions = Iterable[Transaction | Mapping[str, Any]]
"""Accepted batch input: validated records or raw ``{id, date, ...}`` mappings."""
