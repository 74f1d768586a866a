"""
zonebuild — run logging

File: src/zonebuild/observability/logging.py

Purpose
- Write one JSON object per line to ``<log_dir>/<run_id>/zonebuild.jsonl`` for each command run.
- Stamp every line with the run id and whichever of ``fmri``, ``component`` and ``zone`` the
  planner has bound for the package currently being handled.
- Route structlog events through the same sink; their key/value pairs land under ``fields``.
- Redact secret-looking keys (same rule as the config dump) and ``token=...`` style text.
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from zonebuild.config.schema import REDACTED, looks_like_secret

LOG_FILENAME: Final[str] = "zonebuild.jsonl"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("fmri", "component", "zone")

_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(token|password|secret|authorization)(\s*[:=]\s*)[^\s,;]+"
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "zonebuild_correlation", default={}
)

_active_lock = threading.Lock()
_active: RunLog | None = None


@dataclass(frozen=True, slots=True)
class RunLogSettings:
    run_id: str
    log_dir: Path
    level: str = "INFO"
    log_to_stdout: bool = False
    redact_secrets: bool = True
    logger_name: str = "zonebuild"

    @classmethod
    def from_section(
        cls,
        section: Mapping[str, Any] | None,
        *,
        run_id: str,
        logger_name: str = "zonebuild",
    ) -> RunLogSettings:
        """Read an ``[observability]`` config section; missing keys take the defaults."""

        section = section or {}
        return cls(
            run_id=run_id,
            log_dir=Path(section.get("log_dir", "logs")),
            level=str(section.get("log_level", "INFO")),
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redact_secrets=bool(section.get("redact_secrets", True)),
            logger_name=logger_name,
        )


class RunLog:
    """Handlers attached for one run. ``close`` detaches and closes them once."""

    def __init__(
        self, logger: logging.Logger, run_id: str, log_path: Path, handlers: list[logging.Handler]
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._handlers = handlers
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._closed = True


class _CorrelationFilter(logging.Filter):
    """Copy the bound correlation fields onto the record in the emitting thread."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self._run_id
        for key, value in _correlation.get().items():
            if not isinstance(getattr(record, key, None), str):
                setattr(record, key, value)
        return True


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, redact: bool) -> None:
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "run_id": record.__dict__.get("run_id"),
            "message": self._text(record.getMessage()),
        }
        for key in CORRELATION_KEYS:
            value = record.__dict__.get(key)
            if isinstance(value, str) and value:
                line[key] = value

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
            and key not in CORRELATION_KEYS
            and key != "run_id"
            and not key.startswith("_")
        }
        if fields:
            line["fields"] = self._scrub(fields)
        if record.exc_info:
            line["exception"] = self._text(self.formatException(record.exc_info))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), default=str)

    def _text(self, text: str) -> str:
        if not self._redact:
            return text
        return _ASSIGNMENT_RE.sub(lambda match: f"{match[1]}{match[2]}{REDACTED}", text)

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                str(key): REDACTED
                if self._redact and looks_like_secret(str(key))
                else self._scrub(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._scrub(item) for item in value]
        if isinstance(value, str):
            return self._text(value)
        return value


def start_run_log(settings: RunLogSettings) -> RunLog:
    """Attach the JSON-lines sink for ``settings.run_id``, closing any run log still active."""

    global _active
    run_id = settings.run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if "/" in run_id or "\\" in run_id:
        raise ValueError("run_id must not contain path separators")
    level = logging.getLevelName(settings.level.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {settings.level!r}")

    shutdown_logging()

    run_dir = settings.log_dir / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / LOG_FILENAME

    formatter = _JsonLineFormatter(redact=settings.redact_secrets)
    stamp = _CorrelationFilter(run_id)
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if settings.log_to_stdout:
        handlers.append(logging.StreamHandler(sys.stdout))

    logger = logging.getLogger(settings.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(stamp)
        logger.addHandler(handler)

    run_log = RunLog(logger, run_id, log_path, handlers)
    with _active_lock:
        _active = run_log
    return run_log


def setup_logging(
    section: Mapping[str, Any] | None,
    *,
    run_id: str,
    logger_name: str = "zonebuild",
) -> RunLog:
    """Start the run log from the ``[observability]`` section and bridge structlog into it."""

    run_log = start_run_log(
        RunLogSettings.from_section(section, run_id=run_id, logger_name=logger_name)
    )
    configure_structlog()
    return run_log


def shutdown_logging(run_log: RunLog | None = None) -> None:
    global _active
    with _active_lock:
        target = run_log or _active
        if target is _active:
            _active = None
    if target is not None:
        target.close()


def active_run_log() -> RunLog | None:
    with _active_lock:
        return _active


def configure_structlog() -> None:
    """Send structlog events through stdlib logging so the run log's handlers format them."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Bind correlation fields (``fmri``, ``component``, ``zone``) for the enclosed block."""

    unknown = set(fields) - set(CORRELATION_KEYS)
    if unknown:
        raise ValueError(f"unknown correlation field(s): {', '.join(sorted(unknown))}")
    token = _correlation.set({**_correlation.get(), **fields})
    try:
        yield
    finally:
        _correlation.reset(token)


def current_correlation() -> dict[str, str]:
    return dict(_correlation.get())


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "RunLog",
    "RunLogSettings",
    "active_run_log",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "setup_logging",
    "shutdown_logging",
    "start_run_log",
]
