"""Structured logging for clip-gate.

Every gate verdict and corrective action is written to the audit trail with
its measurements, so a rejected scene can be reconstructed from the log alone.
Loggers carry bound context (scene id, format, attempt) that lands on every
record they emit; text output tags each line with the scene it belongs to.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from clip_gate.gates.verdict import GateVerdict


class LogLevel(IntEnum):
    """Log verbosity levels."""

    QUIET = 0  # Errors only
    NORMAL = 1  # Warnings: soft fails, failed remedies
    VERBOSE = 2  # Full gate audit trail
    DEBUG = 3  # Toolkit commands and raw inference text

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Look up a level by its config name, falling back to NORMAL."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            return cls.NORMAL

    @property
    def stdlib_level(self) -> int:
        return {
            LogLevel.QUIET: logging.ERROR,
            LogLevel.NORMAL: logging.WARNING,
            LogLevel.VERBOSE: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]


@dataclass
class LogConfig:
    """Configuration for logging.

    Attributes:
        level: Console verbosity
        log_file: Optional audit file; always written at DEBUG
        json_format: One JSON object per line instead of text
        color: ANSI colors on the console when it is a terminal
    """

    level: LogLevel = LogLevel.NORMAL
    log_file: Path | None = None
    json_format: bool = False
    color: bool = True


class Colors:
    """ANSI color codes."""

    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    GRAY = "\033[90m"


# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName",
})


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """Renders records as tagged text lines or JSON objects."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.MAGENTA,
    }

    def __init__(self, json_format: bool = False, include_timestamp: bool = True, color: bool = False):
        super().__init__()
        self.json_format = json_format
        self.include_timestamp = include_timestamp
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.color else text

    def _format_json(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_timestamp:
            data["timestamp"] = datetime.fromtimestamp(record.created).isoformat()

        context = {k: _jsonable(v) for k, v in _record_context(record).items()}
        if context:
            data["context"] = context
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data)

    def _format_text(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        parts = []

        if self.include_timestamp:
            stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
            parts.append(self._paint(stamp, Colors.GRAY))

        level = record.levelname[:4].ljust(4)
        parts.append(self._paint(level, self.LEVEL_COLORS.get(record.levelno, Colors.RESET)))

        tag = context.pop("scene_id", None)
        attempt = context.pop("attempt", None)
        if tag is not None:
            parts.append(f"[{tag}#{attempt}]" if attempt is not None else f"[{tag}]")

        parts.append(record.getMessage())
        line = " ".join(parts)

        if context:
            line += " " + self._paint(" ".join(f"{k}={v}" for k, v in context.items()), Colors.GRAY)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ClipGateLogger(logging.Logger):
    """Logger that merges bound context into every record."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        super().__init__(name, level)
        self._context: dict[str, Any] = {}

    def with_context(self, **context: Any) -> "ClipGateLogger":
        """Return a logger that adds ``context`` to every record.

        The original logger is left untouched. Per-call ``extra`` values win
        over bound ones.
        """
        bound = ClipGateLogger(self.name, self.level)
        bound.parent = self.parent
        bound.handlers = self.handlers
        bound._context = {**self._context, **context}
        return bound

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1):
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra={**self._context, **(extra or {})},
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


_initialized = False


def configure_logging(config: LogConfig | None = None) -> None:
    """Install handlers on the ``clip_gate`` logger tree.

    Safe to call again; existing handlers are replaced.
    """
    global _initialized
    config = config or LogConfig()

    logging.setLoggerClass(ClipGateLogger)
    level = config.level.stdlib_level

    root = logging.getLogger("clip_gate")
    root.setLevel(logging.DEBUG if config.log_file else level)
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(StructuredFormatter(
        json_format=config.json_format,
        color=config.color and sys.stderr.isatty(),
    ))
    root.addHandler(console)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        audit = logging.FileHandler(config.log_file, encoding="utf-8")
        audit.setLevel(logging.DEBUG)
        audit.setFormatter(StructuredFormatter(json_format=config.json_format))
        root.addHandler(audit)

    _initialized = True


def get_logger(name: str) -> ClipGateLogger:
    """Get a logger for the given name (usually ``__name__``)."""
    if not _initialized:
        configure_logging()

    logger = logging.getLogger(name)
    if not isinstance(logger, ClipGateLogger):
        # Created before our logger class was installed
        adopted = ClipGateLogger(name)
        adopted.parent = logger.parent
        adopted.handlers = logger.handlers
        adopted.level = logger.level
        return adopted
    return logger  # type: ignore[return-value]


def log_scene_started(logger: logging.Logger, prompt: str, **context: Any) -> None:
    """Record the start of a scene's production."""
    context.update({"event": "scene_started", "prompt_chars": len(prompt)})
    logger.info("Scene production started", extra=context)


def log_scene_finished(
    logger: logging.Logger,
    status: str,
    duration: float,
    **context: Any,
) -> None:
    """Record how a scene's production ended.

    Accepted scenes log at INFO, everything else at WARNING.

    Args:
        logger: Logger to use, normally bound to the scene
        status: Final production status value
        duration: Wall time in seconds
        **context: Additional fields (rejection kind, attempts)
    """
    context.update({"event": "scene_finished", "status": status, "duration_seconds": round(duration, 2)})
    message = f"Scene production finished: {status}"
    if status == "accepted":
        logger.info(message, extra=context)
    else:
        logger.warning(message, extra=context)


def log_gate_verdict(logger: logging.Logger, verdict: "GateVerdict", **context: Any) -> None:
    """Write one gate verdict to the audit trail.

    Passing and transform verdicts log at INFO, soft failures at WARNING and
    hard failures at ERROR. Measurements are always attached.
    """
    context.update({
        "event": "gate_verdict",
        "gate": verdict.gate_index,
        "gate_name": verdict.gate_name,
        "outcome": verdict.outcome.value,
        "classification": verdict.classification.value,
        "measurements": verdict.measurements,
    })
    if verdict.corrective_action is not None:
        context["corrective_action"] = verdict.corrective_action.value
    if verdict.flags:
        context["flags"] = list(verdict.flags)
    if verdict.reason:
        context["reason"] = verdict.reason

    message = f"Gate {verdict.gate_index} ({verdict.gate_name}): {verdict.outcome.value.upper()}"
    if verdict.is_hard_fail:
        logger.error(message, extra=context)
    elif verdict.failed:
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_corrective_action(
    logger: logging.Logger,
    action: str,
    succeeded: bool,
    **context: Any,
) -> None:
    """Write one corrective action to the audit trail."""
    context.update({"event": "corrective_action", "action": action, "succeeded": succeeded})
    if succeeded:
        logger.info(f"Corrective action applied: {action}", extra=context)
    else:
        logger.warning(f"Corrective action failed: {action}", extra=context)
