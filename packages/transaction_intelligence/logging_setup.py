"""Log wiring for ``transaction_intelligence``.

Every module logs through a child of the ``"transaction_intelligence"`` logger
and emits one-line events shaped ``<area>:<event> key=value ...``:

- ``classifier:fallback`` / ``embeddings:fallback``: a remote capability was
  unavailable and the deterministic local path answered instead, with the
  number of attempts made and the final error class.
- ``categorize:*``: when the classifier was consulted for a transaction.
- ``merchants:normalized``: key and cluster counts plus the vector source.
- ``orchestrator:*``: progress, stage failures and narrative fallbacks. These
  go through :func:`session_logger`, so each line ends with ``session=<id>``
  and concurrent sessions can be told apart in one stream.

The library never writes anywhere by itself. Entrypoints call
:func:`configure_logging` once; until then the package logger only carries a
``NullHandler``.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping, MutableMapping
from typing import IO, Any

PACKAGE_LOGGER = "transaction_intelligence"
LEVEL_ENV = "TI_LOG_LEVEL"
_HANDLER_NAME = "transaction_intelligence.stream"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"


def resolve_level(level: int | str | None, env: Mapping[str, str] | None = None) -> int:
    """Turn ``level`` (or ``TI_LOG_LEVEL`` when ``None``) into a numeric level.

    Unknown names resolve to ``INFO``.
    """

    if isinstance(level, int):
        return level
    if level is None:
        level = (os.environ if env is None else env).get(LEVEL_ENV)
        if not level:
            return logging.INFO
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def _stream_handler(logger: logging.Logger) -> logging.Handler | None:
    return next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> logging.Handler:
    """Attach the package's stream handler and return it.

    Calling again is a no-op that returns the existing handler, unless
    ``force`` is set, in which case the handler is replaced. Output goes to
    ``sys.stderr`` by default so stdout stays free for JSON/TSV results.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    existing = _stream_handler(logger)
    if existing is not None and not force:
        return existing

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler) or h is existing:
            logger.removeHandler(h)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return handler


def get_logger(name: str) -> logging.Logger:
    """Child logger of the package; library use stays silent until configured."""

    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        root.addHandler(logging.NullHandler())
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


class SessionLogAdapter(logging.LoggerAdapter):
    """Appends ``session=<id>`` to every event line."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        session = str((self.extra or {}).get("session_id", "-")).replace("%", "%%")
        return f"{msg} session={session}", kwargs


def session_logger(logger: logging.Logger, session_id: str) -> SessionLogAdapter:
    return SessionLogAdapter(logger, {"session_id": session_id})


__all__ = [
    "LEVEL_ENV",
    "PACKAGE_LOGGER",
    "SessionLogAdapter",
    "configure_logging",
    "get_logger",
    "resolve_level",
    "session_logger",
]
