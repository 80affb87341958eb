"""Transaction intelligence: categorize, normalize and analyze bank transactions.

Typical use::

    from transaction_intelligence import AnalysisOrchestrator, PipelineConfig

    result = AnalysisOrchestrator(PipelineConfig.from_env()).run("session-1", rows)
    result.to_dict()

``rows`` are ``{id, date, description, amount}`` mappings or
:class:`Transaction` instances. Remote classification and embeddings are used
only when ``OPENAI_API_KEY`` is available; otherwise deterministic local
fallbacks apply.
"""

from .anomalies import detect_anomalies
from .categories import assign_category, categorize_transactions
from .classifier import SentimentClassifier, TextClassifier
from .config import PipelineConfig
from .embeddings import MerchantEmbedder
from .errors import CapabilityError
from .merchants import MerchantNormalizer, extract_merchant_key
from .models import (
    TAXONOMY,
    AnalysisResult,
    AnomalyFlag,
    CategorizedTransaction,
    ClassifierSignal,
    DataQualityScore,
    InsightRecord,
    MerchantCluster,
    RecurringPattern,
    StageOutcome,
    Transaction,
)
from .orchestrator import AnalysisOrchestrator
from .patterns import detect_recurring_pattern
from .quality import score_data_quality
from .retry import RetryPolicy
from .stages import AnalysisContext, AnalysisStage

__all__ = [
    "TAXONOMY",
    "AnalysisContext",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "AnalysisStage",
    "AnomalyFlag",
    "CapabilityError",
    "CategorizedTransaction",
    "ClassifierSignal",
    "DataQualityScore",
    "InsightRecord",
    "MerchantCluster",
    "MerchantEmbedder",
    "MerchantNormalizer",
    "PipelineConfig",
    "RecurringPattern",
    "RetryPolicy",
    "SentimentClassifier",
    "StageOutcome",
    "TextClassifier",
    "Transaction",
    "assign_category",
    "categorize_transactions",
    "detect_anomalies",
    "detect_recurring_pattern",
    "extract_merchant_key",
    "score_data_quality",
]
