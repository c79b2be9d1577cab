from __future__ import annotations

from collections import deque
import json
import logging
import sys
import threading
from typing import Callable, Final, Literal, cast


_LOGGER_NAME: Final[str] = "docsbump"
_MAX_VALUE_LEN: Final[int] = 120
_MAX_CAPTURED_LINES: Final[int] = 2000
_VERBOSE_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"
_CAPTURE_FORMAT: Final[str] = "%(levelname)s %(name)s %(message)s"
_LOW_VERBOSITY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "upgrade_check_started",
        "upgrade_not_needed",
        "upgrade_needed",
        "upgrade_pr_exists",
        "upgrade_completed",
        "github_pr_created",
        "github_pr_create_failed",
        "git_push_failed",
        "failure_issue_created",
    }
)


VerboseMode = Literal["low", "high"]


class _CapturedLogs(logging.Handler):
    """Keeps the formatted lines of the current run for failure reports."""

    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self._lines: deque[str] = deque(maxlen=_MAX_CAPTURED_LINES)
        self._lines_lock = threading.Lock()
        self.setFormatter(logging.Formatter(_CAPTURE_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._lines_lock:
            self._lines.append(line)

    def lines(self) -> list[str]:
        with self._lines_lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lines_lock:
            self._lines.clear()


_CAPTURED = _CapturedLogs()


def configure_logging(verbose: bool | str | None) -> None:
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(_CAPTURED)
    logger.setLevel(logging.INFO)
    mode = _normalize_verbose_mode(verbose)

    if mode is None:
        return

    stream_handler = logging.StreamHandler(sys.stderr)
    _configure_handler(stream_handler, mode)
    logger.addHandler(stream_handler)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.info(_build_event_message(event=event, fields=fields))


def captured_log_lines() -> list[str]:
    return _CAPTURED.lines()


def reset_captured_logs() -> None:
    _CAPTURED.clear()


def best_effort(
    logger: logging.Logger,
    action: str,
    fn: Callable[[], object],
    **fields: object,
) -> bool:
    """Run ``fn``; log and swallow any failure. Returns whether ``fn`` completed."""
    try:
        fn()
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            _build_event_message(
                event="best_effort_failed",
                fields={
                    **fields,
                    "action": action,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
        )
        return False
    return True


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_normalize_field_value(event)}"]
    for key in sorted(fields.keys()):
        parts.append(f"{key}={_normalize_field_value(fields[key])}")
    return " ".join(parts)


def _normalize_field_value(value: object) -> str:
    if value is None:
        normalized = "null"
    elif isinstance(value, bool):
        normalized = "true" if value else "false"
    elif isinstance(value, int | float):
        normalized = str(value)
    elif isinstance(value, str):
        collapsed = " ".join(value.split())
        if len(collapsed) > _MAX_VALUE_LEN:
            collapsed = f"{collapsed[:_MAX_VALUE_LEN]}..."
        normalized = collapsed if collapsed else "<empty>"
    elif isinstance(value, tuple | list):
        normalized = ",".join(_normalize_field_value(item) for item in value) or "<empty>"
    else:
        normalized = f"<{type(value).__name__}>"

    if any(ch.isspace() for ch in normalized) or "=" in normalized:
        return json.dumps(normalized)
    return normalized


def _normalize_verbose_mode(verbose: bool | str | None) -> VerboseMode | None:
    if verbose is None:
        return None
    if isinstance(verbose, bool):
        return "high" if verbose else None
    normalized = verbose.strip().lower()
    if normalized in {"low", "high"}:
        return cast(VerboseMode, normalized)
    raise ValueError(f"Unsupported verbose mode: {verbose!r}")


def _configure_handler(handler: logging.Handler, mode: VerboseMode) -> None:
    handler.setFormatter(logging.Formatter(_VERBOSE_FORMAT))
    if mode == "low":
        handler.addFilter(_LowVerbosityFilter())


def _extract_event_name(message: str) -> str | None:
    if not message.startswith("event="):
        return None
    first_field = message.split(" ", 1)[0]
    if first_field == "event=":
        return None
    return first_field[len("event=") :]


class _LowVerbosityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        event_name = _extract_event_name(record.getMessage())
        return event_name in _LOW_VERBOSITY_EVENTS
