"""Exception types raised inside the pipeline.

Callers of :class:`~transaction_intelligence.orchestrator.AnalysisOrchestrator`
never see these: adapters recover from :class:`CapabilityError` with local
fallbacks and the orchestrator converts stage failures into degraded
outcomes.
"""

from __future__ import annotations


class CapabilityError(RuntimeError):
    """An external capability (classification, embedding) could not be used.

    ``attempts`` is the number of calls made before giving up.
    """

    def __init__(self, message: str, *, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


__all__ = ["CapabilityError"]
