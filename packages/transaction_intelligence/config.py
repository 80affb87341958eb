"""Pipeline configuration.

Model names, thresholds and concurrency caps are explicit values handed to the
adapters and the orchestrator at construction time. :meth:`PipelineConfig.from_env`
reads overrides from ``TI_*`` environment variables; the CLI loads a local
``.env`` first.

Environment variables
---------------------
- ``OPENAI_API_KEY``: enables the remote classifier/embedding calls. Without it
  both adapters use their local fallbacks and make no network calls.
- ``TI_REMOTE_ENABLED``: ``0``/``false`` forces local fallbacks even with a key.
- ``TI_CLASSIFIER_MODEL`` / ``TI_EMBEDDING_MODEL`` / ``TI_EMBEDDING_DIMENSIONS``
- ``TI_SIMILARITY_THRESHOLD``
- ``TI_CLASSIFIER_CONCURRENCY`` / ``TI_STAGE_CONCURRENCY``
- ``TI_MAX_ATTEMPTS`` / ``TI_CALL_TIMEOUT_S``
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .retry import RetryPolicy

DEFAULT_CLASSIFIER_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 384
DEFAULT_SIMILARITY_THRESHOLD = 0.8

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Settings threaded through one orchestrator and its adapters."""

    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    classifier_concurrency: int = 4
    stage_concurrency: int = 3
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    remote_enabled: bool = False

    def __post_init__(self) -> None:
        if self.embedding_dimensions < 8:
            raise ValueError("embedding_dimensions must be at least 8")
        if not 0.0 < self.similarity_threshold < 1.0:
            raise ValueError("similarity_threshold must be within (0,1)")
        if self.classifier_concurrency < 1 or self.stage_concurrency < 1:
            raise ValueError("concurrency caps must be positive integers")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PipelineConfig:
        """Build a config from ``env`` (defaults to ``os.environ``)."""

        e = os.environ if env is None else env

        def _int(name: str, default: int) -> int:
            raw = (e.get(name) or "").strip()
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError as exc:
                raise ValueError(f"{name} must be an integer, got {raw!r}") from exc

        def _float(name: str, default: float) -> float:
            raw = (e.get(name) or "").strip()
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError as exc:
                raise ValueError(f"{name} must be a number, got {raw!r}") from exc

        remote = bool((e.get("OPENAI_API_KEY") or "").strip())
        flag = (e.get("TI_REMOTE_ENABLED") or "").strip().lower()
        if flag in _FALSE:
            remote = False
        elif flag in _TRUE and not remote:
            # Explicitly enabled without a key: the SDK would fail on every call.
            raise ValueError("TI_REMOTE_ENABLED is set but OPENAI_API_KEY is missing")

        base_retry = RetryPolicy()
        retry = RetryPolicy(
            max_attempts=_int("TI_MAX_ATTEMPTS", base_retry.max_attempts),
            backoff_schedule=base_retry.backoff_schedule,
            jitter_pct=base_retry.jitter_pct,
            timeout_s=_float("TI_CALL_TIMEOUT_S", base_retry.timeout_s),
        )

        return cls(
            classifier_model=(e.get("TI_CLASSIFIER_MODEL") or "").strip()
            or DEFAULT_CLASSIFIER_MODEL,
            embedding_model=(e.get("TI_EMBEDDING_MODEL") or "").strip()
            or DEFAULT_EMBEDDING_MODEL,
            embedding_dimensions=_int("TI_EMBEDDING_DIMENSIONS", DEFAULT_EMBEDDING_DIMENSIONS),
            similarity_threshold=_float("TI_SIMILARITY_THRESHOLD", DEFAULT_SIMILARITY_THRESHOLD),
            classifier_concurrency=_int("TI_CLASSIFIER_CONCURRENCY", 4),
            stage_concurrency=_int("TI_STAGE_CONCURRENCY", 3),
            retry=retry,
            remote_enabled=remote,
        )


__all__ = ["PipelineConfig"]
