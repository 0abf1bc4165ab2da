from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Iterator


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    parts = [f"event={event}"]
    for key, value in fields.items():
        parts.append(f"{key}={value}")
    logger.log(level, " ".join(parts))


def configure_logging(logger_name: str, default_level: str = "INFO") -> logging.Logger:
    """Set up root handlers from ``NT_LOG_LEVEL``, ``NT_LOG_FILE`` and ``NT_LOG_LEVELS``.

    Safe to call repeatedly: a stdout handler and the file handler are only
    attached when the root logger does not already carry an equivalent one.
    """
    level = parse_level(os.environ.get("NT_LOG_LEVEL", default_level))
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)

    if not _has_handler(root, _writes_to_stdout):
        _attach(root, logging.StreamHandler(sys.stdout), level)

    log_path = os.environ.get("NT_LOG_FILE")
    if log_path:
        log_path = os.path.abspath(log_path)
        if not _has_handler(root, lambda handler: _writes_to_file(handler, log_path)):
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
            _attach(root, logging.FileHandler(log_path), level)

    for name, override in _level_overrides(os.environ.get("NT_LOG_LEVELS", "")):
        logging.getLogger(name).setLevel(override)
    return logging.getLogger(logger_name)


def parse_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _level_overrides(spec: str) -> Iterator[tuple[str, int]]:
    # "nuditytagger.fetch=DEBUG,nuditytagger.cache=WARNING"
    for item in spec.split(","):
        name, sep, level = item.partition("=")
        if sep and name.strip():
            yield name.strip(), parse_level(level)


def _has_handler(root: logging.Logger, predicate: Callable[[logging.Handler], bool]) -> bool:
    return any(predicate(handler) for handler in root.handlers)


def _writes_to_stdout(handler: logging.Handler) -> bool:
    return (
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        and handler.stream is sys.stdout
    )


def _writes_to_file(handler: logging.Handler, path: str) -> bool:
    return isinstance(handler, logging.FileHandler) and handler.baseFilename == path


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)


def json_dumps(value: Any, *, indent: int | None = None) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True, indent=indent, ensure_ascii=False)


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
