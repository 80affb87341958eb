"""Text classifier adapter: remote sentiment signal with a local fallback.

:class:`SentimentClassifier` asks the OpenAI Responses API for a
positive/neutral/negative label on a transaction description, using a strict
JSON schema, and validates the reply into a
:class:`~transaction_intelligence.models.ClassifierSignal`. Any failure
(missing key, timeout, non-2xx, malformed JSON) is absorbed: the adapter
returns the keyword-rule fallback signal instead. ``classify`` never raises.

No client is created and no environment is read at import time.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from openai import OpenAI
from pydantic import ValidationError

from .config import PipelineConfig
from .errors import CapabilityError
from .logging_setup import get_logger
from .models import ClassifierSignal
from .retry import call_with_retry

_logger = get_logger("transaction_intelligence.classifier")

LABELS: tuple[str, ...] = ("positive", "neutral", "negative")

_INSTRUCTIONS = (
    "You label the financial sentiment of a single bank transaction description. "
    "Return one label from positive, neutral or negative and a score in [0,1] for "
    "every label; scores should sum to roughly 1. Output JSON only that conforms to "
    "the specified schema."
)

_RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "name": "transaction_sentiment",
    "schema": {
        "type": "object",
        "properties": {
            "label": {"type": "string", "enum": list(LABELS)},
            "scores": {
                "type": "object",
                "properties": {lbl: {"type": "number"} for lbl in LABELS},
                "required": list(LABELS),
                "additionalProperties": False,
            },
        },
        "required": ["label", "scores"],
        "additionalProperties": False,
    },
    "strict": True,
}

_POSITIVE_RE = re.compile(r"\b(?:exceeded|growth|positive|gain|dividend|bonus)\b", re.I)
_NEGATIVE_RE = re.compile(r"\b(?:declined|negative|plummeted|overdraft|penalty|late fee)\b", re.I)


class TextClassifier(Protocol):
    """Anything that turns free text into a :class:`ClassifierSignal`."""

    def classify(self, text: str) -> ClassifierSignal: ...


def fallback_signal(text: str) -> ClassifierSignal:
    """Deterministic keyword-rule sentiment used when the remote path is unavailable."""

    if _POSITIVE_RE.search(text):
        return ClassifierSignal(label="positive", confidence=0.8, source="fallback")
    if _NEGATIVE_RE.search(text):
        return ClassifierSignal(label="negative", confidence=0.8, source="fallback")
    return ClassifierSignal(label="neutral", confidence=0.7, source="fallback")


def _create_client() -> OpenAI:
    # Retries are owned by RetryPolicy; the SDK's own retry loop is disabled.
    return OpenAI(max_retries=0)


def _extract_output_text(resp: Any) -> str:
    """Locate the text payload of a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``
    (or its ``value`` attribute on SDKs that wrap text in an object).
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        content = getattr(output[0], "content", None) if output else None
        if content:
            node = getattr(content[0], "text", None)
            text = node if isinstance(node, str) else getattr(node, "value", None)
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def parse_signal(text: str) -> ClassifierSignal:
    """Validate the model's JSON into a signal; ``ValueError`` on any mismatch."""

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("classifier output was not valid JSON") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("classifier output must be a JSON object")
    scores_raw = decoded.get("scores")
    if not isinstance(scores_raw, Mapping):
        raise ValueError("classifier output missing 'scores'")
    label = str(decoded.get("label") or "").strip().lower()
    if label not in LABELS:
        raise ValueError(f"classifier returned unknown label: {label!r}")
    try:
        scores = {str(k).lower(): float(v) for k, v in scores_raw.items()}
        return ClassifierSignal(
            label=label,
            confidence=scores.get(label, 0.0),
            scores=scores,
            source="remote",
        )
    except (TypeError, ValidationError) as e:
        raise ValueError(f"classifier output failed validation: {e}") from e


class SentimentClassifier:
    """Remote sentiment classifier with a deterministic local fallback.

    Parameters
    ----------
    config:
        Supplies the model name, the retry policy and whether remote calls are
        enabled at all.
    client_factory:
        Builds the OpenAI client lazily on first remote use. Defaults to the
        module-level factory so tests can monkeypatch ``OpenAI``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or _create_client
        self._client: Any | None = None

    @property
    def remote_enabled(self) -> bool:
        return self._config.remote_enabled

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _classify_remote(self, text: str) -> ClassifierSignal:
        client = self._get_client()

        def _call(timeout_s: float) -> ClassifierSignal:
            resp = client.responses.create(
                model=self._config.classifier_model,
                instructions=_INSTRUCTIONS,
                input=text,
                text={"format": _RESPONSE_FORMAT},
                timeout=timeout_s,
            )
            return parse_signal(_extract_output_text(resp))

        return call_with_retry(_call, self._config.retry, label="classifier")

    def classify(self, text: str) -> ClassifierSignal:
        if not self.remote_enabled:
            return fallback_signal(text)
        try:
            return self._classify_remote(text)
        except CapabilityError as e:
            _logger.warning(
                "classifier:fallback attempts=%d error=%s",
                e.attempts,
                (e.__cause__ or e).__class__.__name__,
            )
            return fallback_signal(text)
        except Exception as e:  # noqa: BLE001
            # Client construction problems (bad key format, proxy config) land here.
            _logger.warning("classifier:fallback attempts=0 error=%s", e.__class__.__name__)
            return fallback_signal(text)


__all__ = [
    "LABELS",
    "SentimentClassifier",
    "TextClassifier",
    "fallback_signal",
    "parse_signal",
]
