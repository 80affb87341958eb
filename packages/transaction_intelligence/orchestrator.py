"""Multi-stage orchestration for one analysis run.

Run shape::

    data_extraction  categorization stage (sequential prerequisite)
    analysis         spending / savings / risk stages, concurrently
    personality_transform  narrative stage
    complete

Every stage failure is contained: categorization falls back to an all-``Other``
batch, a concurrent stage that raises is replaced by a degraded record for
that stage only, and a failing narrative writer yields
:data:`~transaction_intelligence.narrative.FALLBACK_NARRATIVE`. Unusable input
puts the run in ``error``. :meth:`AnalysisOrchestrator.run` never raises.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence

from .categories import coerce_transactions
from .classifier import SentimentClassifier, TextClassifier
from .config import PipelineConfig
from .embeddings import Embedder, MerchantEmbedder
from .fanout import p_settle
from .logging_setup import get_logger, session_logger
from .merchants import MerchantNormalizer
from .models import (
    AnalysisResult,
    DataQualityScore,
    InsightRecord,
    OrchestratorState,
    RunStep,
    StageOutcome,
    StageStatus,
    Transaction,
    Transactions,
)
from .narrative import FALLBACK_NARRATIVE, NarrativeWriter, TemplateNarrator
from .stages import (
    AnalysisContext,
    AnalysisStage,
    CategorizationStage,
    default_stages,
    degraded_context,
)

_logger = get_logger("transaction_intelligence.orchestrator")

NARRATIVE_STAGE = "narrative"

type ProgressCallback = Callable[[str], None]


def _degraded_outcome(name: str, label: str, error: BaseException) -> StageOutcome:
    return StageOutcome(
        stage=name,
        insights=(
            InsightRecord(
                title=f"{label} Failed",
                description=f"Unable to complete {label.lower()} due to a processing error.",
                sentiment="negative",
            ),
        ),
        metadata={"error": str(error) or error.__class__.__name__},
        error=f"{error.__class__.__name__}: {error}",
        degraded=True,
    )


class AnalysisOrchestrator:
    """Runs the categorization, analysis and narrative stages for a batch.

    Parameters
    ----------
    config:
        Pipeline settings; defaults to :meth:`PipelineConfig.from_env`.
    classifier / embedder:
        Override the remote adapters (tests, alternative backends). By default
        they are built from ``config``.
    stages:
        The concurrent stages in aggregation order. Defaults to spending,
        savings, risk.
    narrator:
        Writer for the final narrative. Defaults to :class:`TemplateNarrator`.

    One instance serves one run at a time; status is reset when a run starts.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        classifier: TextClassifier | None = None,
        embedder: Embedder | None = None,
        stages: Sequence[AnalysisStage] | None = None,
        narrator: NarrativeWriter | None = None,
    ) -> None:
        self._config = config if config is not None else PipelineConfig.from_env()
        normalizer = MerchantNormalizer(
            embedder if embedder is not None else MerchantEmbedder(self._config),
            threshold=self._config.similarity_threshold,
        )
        self._categorization = CategorizationStage(
            normalizer,
            classifier=classifier if classifier is not None else SentimentClassifier(self._config),
            concurrency=self._config.classifier_concurrency,
        )
        self._stages = list(stages) if stages is not None else default_stages()
        names = [CategorizationStage.name, *(s.name for s in self._stages), NARRATIVE_STAGE]
        if len(set(names)) != len(names):
            raise ValueError(f"stage names must be unique: {names}")
        self._narrator = narrator if narrator is not None else TemplateNarrator()
        self._lock = threading.Lock()
        self._status = dict.fromkeys(names, StageStatus.IDLE)
        self._log = session_logger(_logger, "-")

    # -- status ------------------------------------------------------------

    def stage_status(self) -> dict[str, str]:
        """Snapshot of ``{stage: idle|processing|complete|error}``; thread-safe."""

        with self._lock:
            return {name: str(status) for name, status in self._status.items()}

    def _set_status(self, name: str, status: StageStatus) -> None:
        with self._lock:
            self._status[name] = status

    def _reset_status(self) -> None:
        with self._lock:
            for name in self._status:
                self._status[name] = StageStatus.IDLE

    # -- run ---------------------------------------------------------------

    def run(
        self,
        session_id: str,
        transactions: Transactions,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        """Analyze ``transactions`` and return a well-formed result."""

        def _progress(message: str) -> None:
            self._log.info("orchestrator:progress msg=%s", message)
            if on_progress is None:
                return
            try:
                on_progress(message)
            except Exception as e:  # noqa: BLE001
                self._log.warning("orchestrator:progress_callback_failed error=%s", e)

        self._reset_status()
        self._log = session_logger(_logger, session_id)
        state = OrchestratorState(session_id=session_id)
        try:
            return self._run(state, transactions, _progress)
        except Exception as e:  # noqa: BLE001
            self._log.exception("orchestrator:run_failed")
            return self._error_result(state, f"{e.__class__.__name__}: {e}")

    def _run(
        self,
        state: OrchestratorState,
        transactions: Transactions,
        progress: ProgressCallback,
    ) -> AnalysisResult:
        progress("Reading transactions")
        try:
            batch = coerce_transactions(transactions)
        except (TypeError, ValueError) as e:
            self._log.warning("orchestrator:invalid_input error=%s", e)
            return self._error_result(state, f"invalid input: {e}")

        context = self._categorize(state, batch, progress)

        state.current_step = RunStep.ANALYSIS
        progress("Analyzing spending, savings and risk")
        state.outcomes.extend(self._run_stages(context))

        state.current_step = RunStep.PERSONALITY_TRANSFORM
        progress("Writing summary")
        insights = tuple(i for o in state.outcomes for i in o.insights)
        state.narrative, narrative_outcome = self._narrate(insights, context.quality)
        state.outcomes.append(narrative_outcome)

        state.current_step = RunStep.COMPLETE
        progress("Analysis complete")
        return AnalysisResult(
            session_id=state.session_id,
            state=state,
            insights=insights,
            categorized=context.categorized,
            quality=context.quality,
            patterns=context.patterns,
            anomalies=context.anomalies,
        )

    def _categorize(
        self,
        state: OrchestratorState,
        batch: list[Transaction],
        progress: ProgressCallback,
    ) -> AnalysisContext:
        stage = self._categorization
        progress(f"Categorizing {len(batch)} transactions")
        self._set_status(stage.name, StageStatus.PROCESSING)
        try:
            context, outcome = stage.run(state.session_id, batch)
        except Exception as e:  # noqa: BLE001
            self._log.exception("orchestrator:stage_failed stage=%s", stage.name)
            self._set_status(stage.name, StageStatus.ERROR)
            state.outcomes.append(_degraded_outcome(stage.name, stage.label, e))
            return degraded_context(state.session_id, batch)
        self._set_status(stage.name, StageStatus.COMPLETE)
        state.outcomes.append(outcome)
        return context

    def _run_stages(self, context: AnalysisContext) -> list[StageOutcome]:
        if not self._stages:
            return []

        def _run_one(stage: AnalysisStage) -> StageOutcome:
            self._set_status(stage.name, StageStatus.PROCESSING)
            try:
                outcome = stage.run(context)
            except Exception:
                self._set_status(stage.name, StageStatus.ERROR)
                raise
            self._set_status(stage.name, StageStatus.COMPLETE)
            return outcome

        settled = p_settle(self._stages, _run_one, concurrency=self._config.stage_concurrency)
        outcomes: list[StageOutcome] = []
        for stage, result in zip(self._stages, settled, strict=True):
            if result.ok and result.value is not None:
                outcomes.append(result.value)
                continue
            error = result.error or RuntimeError("stage returned no outcome")
            self._log.error(
                "orchestrator:stage_failed stage=%s error=%s",
                stage.name,
                error.__class__.__name__,
            )
            self._set_status(stage.name, StageStatus.ERROR)
            outcomes.append(_degraded_outcome(stage.name, stage.label, error))
        return outcomes

    def _narrate(
        self, insights: Sequence[InsightRecord], quality: DataQualityScore
    ) -> tuple[str, StageOutcome]:
        self._set_status(NARRATIVE_STAGE, StageStatus.PROCESSING)
        try:
            text = self._narrator.write(insights, quality)
            if not isinstance(text, str) or not text.strip():
                raise ValueError("narrative writer returned no text")
        except Exception as e:  # noqa: BLE001
            self._log.warning("orchestrator:narrative_fallback error=%s", e.__class__.__name__)
            self._set_status(NARRATIVE_STAGE, StageStatus.ERROR)
            return FALLBACK_NARRATIVE, StageOutcome(
                stage=NARRATIVE_STAGE,
                insights=(),
                metadata={"fallback": True},
                error=f"{e.__class__.__name__}: {e}",
                degraded=True,
            )
        self._set_status(NARRATIVE_STAGE, StageStatus.COMPLETE)
        return text, StageOutcome(stage=NARRATIVE_STAGE, insights=(), metadata={"fallback": False})

    def _error_result(self, state: OrchestratorState, message: str) -> AnalysisResult:
        state.current_step = RunStep.ERROR
        state.error = message
        state.narrative = FALLBACK_NARRATIVE
        return AnalysisResult(
            session_id=state.session_id,
            state=state,
            insights=tuple(i for o in state.outcomes for i in o.insights),
            categorized=(),
            quality=DataQualityScore(score=0.0, completeness=0.0, categorization_rate=0.0, total=0),
            patterns=(),
            anomalies=(),
        )


__all__ = ["AnalysisOrchestrator", "NARRATIVE_STAGE"]
