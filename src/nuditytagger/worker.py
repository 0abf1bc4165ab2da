from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from .cache import AdvisoryCache, PathTraversalDetected
from .classifier import KeywordTable, classify
from .config import Config
from .identifiers import InvalidIdentifier, normalize_identifier
from .models import MediaItem, Outcome
from .pipelines.advisory_fetch import AdvisoryFetcher, FetchFailed, RunCancelled
from .tagger import apply_tags, has_category_tags
from .utils import log_event


TAGGED = "tagged"
SKIPPED = "skipped"
FAILED = "failed"

Persist = Callable[[MediaItem], None]
Progress = Callable[[float], None]


def item_identifier(item: MediaItem) -> str | None:
    if item.external_id:
        return item.external_id
    if item.kind == "episode" and item.series_external_id:
        return item.series_external_id
    return None


def process_one(
    item: MediaItem,
    *,
    config: Config,
    fetcher: AdvisoryFetcher,
    persist: Persist,
    seen_ids: set[str],
    cancel_event: threading.Event | None = None,
    keywords: KeywordTable | None = None,
    logger: logging.Logger | None = None,
) -> Outcome:
    logger = logger or logging.getLogger("nuditytagger.worker")
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled("cancellation requested")
    tagging = config.tagging
    prefix = tagging.tag_prefix

    if tagging.skip_already_tagged and has_category_tags(item.tags, prefix):
        return _skip(logger, item, None, "already_tagged")

    raw_identifier = item_identifier(item)
    if not raw_identifier:
        return _skip(logger, item, None, "missing_identifier")
    try:
        identifier = normalize_identifier(raw_identifier)
    except InvalidIdentifier as exc:
        log_event(logger, logging.WARNING, "identifier_invalid", item=item.name, error=str(exc))
        return _skip(logger, item, None, "invalid_identifier")

    if item.kind == "episode" and identifier in seen_ids:
        return _skip(logger, item, identifier, "identifier_already_processed")

    try:
        record = fetcher.fetch(identifier)
    except FetchFailed as exc:
        return _fail(logger, item, identifier, "fetch_failed", exc)
    except PathTraversalDetected as exc:
        return _fail(logger, item, identifier, "path_traversal", exc)
    if record is None:
        return _skip(logger, item, identifier, "not_found")

    tags = classify(
        record,
        tagging.minimum_severity_to_tag,
        prefix,
        keywords or KeywordTable.from_config(config.classifier.keywords),
    )
    if not tags:
        return _skip(logger, item, identifier, "below_threshold")

    result = apply_tags(item, tags, prefix, tagging.set_tagline)
    if result.is_noop:
        log_event(logger, logging.WARNING, "no_valid_tags", item=item.name, identifier=identifier)
        return _skip(logger, item, identifier, "no_valid_tags")

    try:
        persist(item)
    except Exception as exc:  # noqa: BLE001
        return _fail(logger, item, identifier, "persist_failed", exc)

    seen_ids.add(identifier)
    log_event(
        logger,
        logging.INFO,
        "item_tagged",
        item=item.name,
        identifier=identifier,
        tags=",".join(result.applied),
    )
    return Outcome(status=TAGGED, reasons=[], identifier=identifier, tags=result.applied)


def run_batch(
    items: Iterable[MediaItem],
    *,
    config: Config,
    fetcher: AdvisoryFetcher,
    persist: Persist,
    cache: AdvisoryCache | None = None,
    cancel_event: threading.Event | None = None,
    progress: Progress | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, int]:
    logger = logger or logging.getLogger("nuditytagger.worker")
    cancel_event = cancel_event or threading.Event()
    totals = {"total": 0, "processed": 0, "tagged": 0, "skipped": 0, "failed": 0}
    if not config.tagging.enabled:
        log_event(logger, logging.INFO, "tagging_disabled")
        return totals

    if cache is not None and config.cache.enable_cleanup:
        cache.purge_stale()

    items = list(items)
    totals["total"] = len(items)
    keywords = KeywordTable.from_config(config.classifier.keywords)
    seen_ids: set[str] = set()
    delay_seconds = config.http.request_delay_ms / 1000
    log_event(logger, logging.INFO, "tagging_run_started", items=len(items))

    for item in items:
        if cancel_event.is_set():
            raise RunCancelled("cancellation requested")
        totals["processed"] += 1
        if progress is not None:
            progress(totals["processed"] / len(items) * 100)
        requests_before = fetcher.requests_made
        try:
            outcome = process_one(
                item,
                config=config,
                fetcher=fetcher,
                persist=persist,
                seen_ids=seen_ids,
                cancel_event=cancel_event,
                keywords=keywords,
                logger=logger,
            )
        except RunCancelled:
            log_event(logger, logging.INFO, "tagging_run_cancelled", **totals)
            raise
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "item_error", item=item.name, error=str(exc))
            outcome = Outcome(status=FAILED, reasons=["unexpected_error"])
        totals[outcome.status] += 1

        if fetcher.requests_made != requests_before and cancel_event.wait(delay_seconds):
            log_event(logger, logging.INFO, "tagging_run_cancelled", **totals)
            raise RunCancelled("cancelled during request delay")

    log_event(logger, logging.INFO, "tagging_run_complete", **totals)
    return totals


def _skip(logger: logging.Logger, item: MediaItem, identifier: str | None, reason: str) -> Outcome:
    log_event(logger, logging.DEBUG, "item_skipped", item=item.name, identifier=identifier, reason=reason)
    return Outcome(status=SKIPPED, reasons=[reason], identifier=identifier)


def _fail(
    logger: logging.Logger,
    item: MediaItem,
    identifier: str,
    reason: str,
    exc: BaseException,
) -> Outcome:
    log_event(logger, logging.WARNING, "item_failed", item=item.name, identifier=identifier, reason=reason, error=exc)
    return Outcome(status=FAILED, reasons=[reason], identifier=identifier)
