from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import jsonschema

from .config import CACHE_HOURS_RANGE
from .models import AdvisoryRecord
from .utils import clamp, log_event, utc_now


ENTRY_SUFFIX = ".json"

ENTRY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["identifier", "severity", "descriptions", "votes", "fetched_at"],
    "properties": {
        "identifier": {"type": "string", "pattern": "^tt[0-9]{7,8}$"},
        "severity": {"enum": ["Unknown", "None", "Mild", "Moderate", "Severe"]},
        "descriptions": {"type": "array", "items": {"type": "string"}},
        "votes": {
            "type": "object",
            "required": ["none", "mild", "moderate", "severe"],
            "properties": {
                "none": {"type": "integer", "minimum": 0},
                "mild": {"type": "integer", "minimum": 0},
                "moderate": {"type": "integer", "minimum": 0},
                "severe": {"type": "integer", "minimum": 0},
            },
        },
        "fetched_at": {"type": "string"},
    },
}


class PathTraversalDetected(RuntimeError):
    pass


class AdvisoryCache:
    def __init__(
        self,
        root: str | Path,
        ttl_hours: int,
        *,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.root = Path(root)
        self.ttl = timedelta(hours=clamp(int(ttl_hours), *CACHE_HOURS_RANGE))
        self._clock = clock
        self._logger = logger or logging.getLogger("nuditytagger.cache")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            # Reads become misses and writes fail until the root is usable.
            log_event(self._logger, logging.WARNING, "cache_root_unavailable", root=self.root, error=str(exc))

    def entry_path(self, identifier: str) -> Path:
        root = self.root.resolve()
        path = (root / f"{identifier}{ENTRY_SUFFIX}").resolve()
        if path.parent != root:
            log_event(
                self._logger,
                logging.ERROR,
                "cache_path_traversal",
                identifier=repr(identifier),
                path=path,
                root=root,
            )
            raise PathTraversalDetected(f"cache entry path escapes cache root: {path}")
        return path

    def get(self, identifier: str) -> AdvisoryRecord | None:
        path = self.entry_path(identifier)
        if not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            jsonschema.validate(payload, ENTRY_SCHEMA)
            record = AdvisoryRecord.from_dict(payload)
        except (OSError, KeyError, TypeError, ValueError, jsonschema.ValidationError) as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "cache_entry_corrupt",
                identifier=identifier,
                error=str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
            )
            return None
        if record.identifier != identifier:
            log_event(
                self._logger,
                logging.WARNING,
                "cache_entry_mismatch",
                identifier=identifier,
                stored=record.identifier,
            )
            return None
        age = self._clock() - record.fetched_at
        if age > self.ttl:
            log_event(self._logger, logging.DEBUG, "cache_entry_expired", identifier=identifier, age=age)
            return None
        log_event(self._logger, logging.DEBUG, "cache_hit", identifier=identifier)
        return record

    def put(self, identifier: str, record: AdvisoryRecord) -> bool:
        path = self.entry_path(identifier)
        try:
            encoded = json.dumps(record.to_dict(), indent=2, ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{identifier}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(encoded)
                os.replace(tmp_name, path)
            except BaseException:
                _unlink_quietly(Path(tmp_name))
                raise
        except OSError as exc:
            log_event(self._logger, logging.WARNING, "cache_write_failed", identifier=identifier, error=str(exc))
            return False
        log_event(self._logger, logging.DEBUG, "cache_write", identifier=identifier, path=path)
        return True

    def purge_older_than(self, cutoff: datetime) -> int:
        threshold = cutoff.timestamp()
        removed = 0
        for path in self._entries():
            try:
                if path.stat().st_mtime >= threshold:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                log_event(self._logger, logging.WARNING, "cache_purge_failed", path=path, error=str(exc))
                continue
            removed += 1
        log_event(self._logger, logging.INFO, "cache_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def purge_stale(self) -> int:
        return self.purge_older_than(self._clock() - 2 * self.ttl)

    def stats(self) -> dict[str, Any]:
        entries = list(self._entries())
        total_size = 0
        for path in entries:
            try:
                total_size += path.stat().st_size
            except OSError:
                continue
        return {
            "cache_dir": str(self.root),
            "entries": len(entries),
            "total_size_kb": round(total_size / 1024, 1),
            "ttl_hours": int(self.ttl.total_seconds() // 3600),
        }

    def _entries(self):
        if not self.root.is_dir():
            return iter(())
        return (path for path in self.root.glob(f"*{ENTRY_SUFFIX}") if path.is_file())


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        return
