import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from nuditytagger.cache import AdvisoryCache, PathTraversalDetected
from nuditytagger.models import AdvisoryRecord, SeverityLevel


NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _record(identifier="tt1234567", fetched_at=NOW):
    return AdvisoryRecord(
        identifier=identifier,
        severity=SeverityLevel.MODERATE,
        descriptions=["A woman is seen topless from behind.", "Kissing & caressing in a bedroom."],
        votes_none=1,
        votes_mild=4,
        votes_moderate=22,
        votes_severe=3,
        fetched_at=fetched_at,
    )


def test_round_trip_within_ttl(tmp_path):
    clock = _Clock(NOW)
    cache = AdvisoryCache(tmp_path / "cache", ttl_hours=24, clock=clock)
    record = _record()
    assert cache.put("tt1234567", record) is True

    clock.now = NOW + timedelta(hours=23)
    assert cache.get("tt1234567") == record


def test_expired_entry_is_a_miss(tmp_path):
    clock = _Clock(NOW)
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=clock)
    cache.put("tt1234567", _record())

    clock.now = NOW + timedelta(hours=24, seconds=1)
    assert cache.get("tt1234567") is None


def test_missing_entry_is_a_miss(tmp_path):
    cache = AdvisoryCache(tmp_path, ttl_hours=24)
    assert cache.get("tt7654321") is None


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"identifier": "tt1234567"}),
        json.dumps(
            {
                "identifier": "tt1234567",
                "severity": "Extreme",
                "descriptions": [],
                "votes": {"none": 0, "mild": 0, "moderate": 0, "severe": 0},
                "fetched_at": NOW.isoformat(),
            }
        ),
        json.dumps(
            {
                "identifier": "tt1234567",
                "severity": "Mild",
                "descriptions": [],
                "votes": {"none": 0, "mild": 0, "moderate": 0, "severe": 0},
                "fetched_at": "yesterday",
            }
        ),
    ],
)
def test_corrupt_entry_is_a_miss(tmp_path, content):
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=_Clock(NOW))
    (tmp_path / "tt1234567.json").write_text(content, encoding="utf-8")
    assert cache.get("tt1234567") is None


def test_entry_for_other_identifier_is_a_miss(tmp_path):
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=_Clock(NOW))
    cache.put("tt1234567", _record())
    os.replace(tmp_path / "tt1234567.json", tmp_path / "tt7654321.json")
    assert cache.get("tt7654321") is None


@pytest.mark.parametrize("identifier", ["../escape", "tt123/../../x", "sub/tt1234567"])
def test_path_traversal_is_refused(tmp_path, identifier):
    cache = AdvisoryCache(tmp_path / "cache", ttl_hours=24)
    with pytest.raises(PathTraversalDetected):
        cache.get(identifier)
    with pytest.raises(PathTraversalDetected):
        cache.put(identifier, _record())
    assert not (tmp_path / "escape.json").exists()


def test_put_failure_is_swallowed(tmp_path):
    root = tmp_path / "cache"
    cache = AdvisoryCache(root, ttl_hours=24)
    root.rmdir()
    (tmp_path / "cache").write_text("not a directory", encoding="utf-8")
    assert cache.put("tt1234567", _record()) is False


def test_ttl_hours_are_clamped(tmp_path):
    assert AdvisoryCache(tmp_path, ttl_hours=0).ttl == timedelta(hours=1)
    assert AdvisoryCache(tmp_path, ttl_hours=100000).ttl == timedelta(hours=8760)


def test_purge_older_than_removes_only_old_entries(tmp_path):
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=_Clock(NOW))
    cache.put("tt1111111", _record("tt1111111"))
    cache.put("tt2222222", _record("tt2222222"))
    old = (NOW - timedelta(days=5)).timestamp()
    os.utime(tmp_path / "tt1111111.json", (old, old))
    new = (NOW - timedelta(hours=1)).timestamp()
    os.utime(tmp_path / "tt2222222.json", (new, new))

    removed = cache.purge_older_than(NOW - timedelta(days=2))

    assert removed == 1
    assert not (tmp_path / "tt1111111.json").exists()
    assert (tmp_path / "tt2222222.json").exists()


def test_purge_stale_uses_twice_the_ttl(tmp_path):
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=_Clock(NOW))
    cache.put("tt1111111", _record("tt1111111"))
    cache.put("tt2222222", _record("tt2222222"))
    older = (NOW - timedelta(hours=49)).timestamp()
    os.utime(tmp_path / "tt1111111.json", (older, older))
    younger = (NOW - timedelta(hours=47)).timestamp()
    os.utime(tmp_path / "tt2222222.json", (younger, younger))

    assert cache.purge_stale() == 1
    assert (tmp_path / "tt2222222.json").exists()


def test_purge_continues_after_delete_failure(tmp_path, monkeypatch):
    cache = AdvisoryCache(tmp_path, ttl_hours=24, clock=_Clock(NOW))
    for identifier in ("tt1111111", "tt2222222", "tt3333333"):
        cache.put(identifier, _record(identifier))
        old = (NOW - timedelta(days=30)).timestamp()
        os.utime(tmp_path / f"{identifier}.json", (old, old))

    original_unlink = type(tmp_path).unlink

    def _flaky_unlink(self, *args, **kwargs):
        if self.name == "tt2222222.json":
            raise PermissionError("read-only")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(type(tmp_path), "unlink", _flaky_unlink)

    assert cache.purge_older_than(NOW) == 2
    assert (tmp_path / "tt2222222.json").exists()


def test_stats_counts_entries(tmp_path):
    cache = AdvisoryCache(tmp_path, ttl_hours=48, clock=_Clock(NOW))
    cache.put("tt1111111", _record("tt1111111"))
    stats = cache.stats()
    assert stats["entries"] == 1
    assert stats["ttl_hours"] == 48


def test_unusable_root_degrades_to_misses(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with caplog.at_level("WARNING", logger="nuditytagger.cache"):
        cache = AdvisoryCache(blocker / "cache", ttl_hours=24, clock=_Clock(NOW))

    assert "event=cache_root_unavailable" in caplog.text
    assert cache.get("tt1234567") is None
    assert cache.put("tt1234567", _record()) is False
    assert cache.purge_stale() == 0
    assert cache.stats()["entries"] == 0
