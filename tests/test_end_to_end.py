import copy
import io
import logging

from nuditytagger.cache import AdvisoryCache
from nuditytagger.config import DEFAULT_CONFIG, build_config
from nuditytagger.models import MediaItem, SeverityLevel
from nuditytagger.pipelines.advisory_fetch import AdvisoryFetcher
from nuditytagger.worker import run_batch


PAGE = """
<html><body>
<div data-testid="sub-section-nudity">
  <h3>Sex &amp; Nudity</h3>
  <div class="ipc-signpost" data-testid="rating-pill">Moderate</div>
  <ul>
    <li>a brief sensual scene</li>
    <li>Edit</li>
  </ul>
</div>
</body></html>
"""


class _Opener:
    def __init__(self):
        self.urls = []

    def __call__(self, request, timeout=None):
        self.urls.append(request.full_url)
        return io.BytesIO(PAGE.encode("utf-8"))


class _NoWaitEvent:
    def is_set(self):
        return False

    def wait(self, timeout=None):
        return False


def test_batch_fetches_once_and_tags_from_cache_afterwards(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["cache"]["dir"] = str(tmp_path / "cache")
    config = build_config(cfg, logging.getLogger("test"))
    cache = AdvisoryCache(config.cache.dir, config.cache.duration_hours)
    opener = _Opener()
    fetcher = AdvisoryFetcher(
        cache,
        base_url=config.http.base_url,
        user_agent=config.http.user_agent,
        accept_language=config.http.accept_language,
        opener=opener,
    )
    persisted = []

    first = MediaItem(name="Movie", kind="movie", external_id="1234567", tags=["Drama"])
    totals = run_batch(
        [first],
        config=config,
        fetcher=fetcher,
        persist=persisted.append,
        cache=cache,
        cancel_event=_NoWaitEvent(),
    )

    assert totals["tagged"] == 1
    assert opener.urls == ["https://www.imdb.com/title/tt1234567/parentalguide"]
    assert first.tags == ["Drama", "Partial Nudity", "Sexual Content"]
    assert first.tagline == "⚠️ Partial Nudity, Sexual Content"
    assert cache.get("tt1234567").severity is SeverityLevel.MODERATE

    second = MediaItem(name="Same Movie, other library", kind="movie", external_id="tt1234567")
    totals = run_batch(
        [second],
        config=config,
        fetcher=fetcher,
        persist=persisted.append,
        cache=cache,
        cancel_event=_NoWaitEvent(),
    )

    assert totals["tagged"] == 1
    assert len(opener.urls) == 1
    assert second.tags == ["Partial Nudity", "Sexual Content"]
    assert persisted == [first, second]
