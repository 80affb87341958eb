"""Pytest configuration for test isolation.

Puts the workspace ``packages/`` directory on ``sys.path`` so
``transaction_intelligence`` imports without installation, and clears every
environment variable the pipeline reads so no test accidentally reaches the
network or picks up a developer's local settings.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
# `packages/` and the repo root (for `tests.helpers`) resolve first.
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

_PIPELINE_ENV = (
    "OPENAI_API_KEY",
    "TI_REMOTE_ENABLED",
    "TI_CLASSIFIER_MODEL",
    "TI_EMBEDDING_MODEL",
    "TI_EMBEDDING_DIMENSIONS",
    "TI_SIMILARITY_THRESHOLD",
    "TI_CLASSIFIER_CONCURRENCY",
    "TI_STAGE_CONCURRENCY",
    "TI_MAX_ATTEMPTS",
    "TI_CALL_TIMEOUT_S",
    "TI_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _PIPELINE_ENV:
        monkeypatch.delenv(name, raising=False)
