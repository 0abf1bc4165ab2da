from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

from .cache import AdvisoryCache
from .classifier import KeywordTable, classify
from .config import Config, ConfigError, load_config
from .identifiers import InvalidIdentifier, normalize_identifier
from .models import THRESHOLD_LABELS, AdvisoryRecord, SeverityLevel
from .pipelines.advisory_fetch import AdvisoryFetcher, FetchFailed
from .pipelines.advisory_parse import parse_advisory
from .utils import configure_logging, json_dumps, log_event, utc_now


EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INVALID_IDENTIFIER = 2
EXIT_FETCH_FAILED = 3
EXIT_NOT_FOUND = 4


def _open_cache(config: Config) -> AdvisoryCache:
    return AdvisoryCache(config.cache.dir, config.cache.duration_hours)


def _threshold(args: argparse.Namespace, config: Config) -> SeverityLevel:
    if args.min_severity:
        return SeverityLevel.parse(args.min_severity)
    return config.tagging.minimum_severity_to_tag


def _prefix(args: argparse.Namespace, config: Config) -> str:
    if args.prefix is not None:
        return args.prefix.strip()
    return config.tagging.tag_prefix


def _print_result(record: AdvisoryRecord, tags: set[str], as_json: bool) -> None:
    if as_json:
        print(json_dumps({"record": record, "tags": tags}, indent=2))
        return
    print(f"identifier: {record.identifier}")
    print(f"severity:   {record.severity.label}")
    print(
        "votes:      "
        f"none={record.votes_none} mild={record.votes_mild} "
        f"moderate={record.votes_moderate} severe={record.votes_severe}"
    )
    print(f"fetched_at: {record.fetched_at.isoformat()}")
    for description in record.descriptions:
        print(f"  - {description}")
    print("tags:       " + (", ".join(sorted(tags)) or "(none)"))


def _cmd_lookup(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    try:
        identifier = normalize_identifier(args.identifier)
    except InvalidIdentifier as exc:
        log_event(logger, logging.ERROR, "identifier_invalid", error=str(exc))
        return EXIT_INVALID_IDENTIFIER
    fetcher = AdvisoryFetcher.from_config(_open_cache(config), config.http, logger=logger)
    try:
        record = fetcher.fetch(identifier)
    except FetchFailed as exc:
        log_event(logger, logging.ERROR, "lookup_failed", identifier=identifier, error=str(exc))
        return EXIT_FETCH_FAILED
    if record is None:
        log_event(logger, logging.WARNING, "lookup_not_found", identifier=identifier)
        return EXIT_NOT_FOUND
    keywords = KeywordTable.from_config(config.classifier.keywords)
    tags = classify(record, _threshold(args, config), _prefix(args, config), keywords)
    _print_result(record, tags, args.json)
    return EXIT_OK


def _cmd_parse(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    try:
        identifier = normalize_identifier(args.identifier)
    except InvalidIdentifier as exc:
        log_event(logger, logging.ERROR, "identifier_invalid", error=str(exc))
        return EXIT_INVALID_IDENTIFIER
    path = Path(args.path)
    try:
        markup = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        log_event(logger, logging.ERROR, "parse_read_failed", path=path, error=str(exc))
        return EXIT_CONFIG
    record = parse_advisory(markup, identifier)
    keywords = KeywordTable.from_config(config.classifier.keywords)
    tags = classify(record, _threshold(args, config), _prefix(args, config), keywords)
    _print_result(record, tags, args.json)
    return EXIT_OK


def _cmd_cache_purge(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    cache = _open_cache(config)
    if args.older_than_hours is None:
        removed = cache.purge_stale()
    else:
        removed = cache.purge_older_than(utc_now() - timedelta(hours=args.older_than_hours))
    print(f"removed {removed} cache entries")
    return EXIT_OK


def _cmd_cache_stats(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    print(json_dumps(_open_cache(config).stats(), indent=2))
    return EXIT_OK


def _add_classify_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--min-severity",
        choices=THRESHOLD_LABELS,
        default=None,
        help="Override tagging.minimum_severity_to_tag",
    )
    parser.add_argument("--prefix", default=None, help="Override tagging.tag_prefix")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nuditytagger", description="Parents Guide nudity tagger")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to NT_CONFIG_PATH, else built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup_parser = subparsers.add_parser("lookup", help="Fetch, classify and print one title")
    lookup_parser.add_argument("identifier", help="IMDb id, with or without the tt prefix")
    _add_classify_options(lookup_parser)
    lookup_parser.set_defaults(func=_cmd_lookup)

    parse_parser = subparsers.add_parser("parse", help="Parse a saved Parents Guide page offline")
    parse_parser.add_argument("path", help="Path to the saved HTML page")
    parse_parser.add_argument("--id", dest="identifier", required=True, help="IMDb id of the page")
    _add_classify_options(parse_parser)
    parse_parser.set_defaults(func=_cmd_parse)

    cache_parser = subparsers.add_parser("cache", help="Cache maintenance")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command", required=True)

    cache_purge = cache_subparsers.add_parser("purge", help="Delete stale cache entries")
    cache_purge.add_argument(
        "--older-than-hours",
        type=int,
        default=None,
        help="Age cutoff in hours (defaults to twice the cache duration)",
    )
    cache_purge.set_defaults(func=_cmd_cache_purge)

    cache_stats = cache_subparsers.add_parser("stats", help="Show cache statistics")
    cache_stats.set_defaults(func=_cmd_cache_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = configure_logging("nuditytagger")
    try:
        config = load_config(args.config, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return EXIT_CONFIG
    return args.func(args, config, logger)


if __name__ == "__main__":
    sys.exit(main())
