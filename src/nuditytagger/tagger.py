from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import ALL_CATEGORIES, MediaItem


MAX_TAG_LENGTH = 100
MAX_TAGLINE_LENGTH = 500
MAX_OVERVIEW_WARNING_LENGTH = 200
WARNING_GLYPH = "⚠️"
ELLIPSIS = "..."


@dataclass(frozen=True)
class MergeResult:
    tags: list[str]
    applied: list[str]
    changed: bool

    @property
    def is_noop(self) -> bool:
        return not self.applied


def recognized_tags(prefix: str) -> set[str]:
    # Bare names stay recognized so tags written under an older prefix are replaced.
    return set(ALL_CATEGORIES) | {prefix + category for category in ALL_CATEGORIES}


def has_category_tags(tags: Iterable[str] | None, prefix: str) -> bool:
    if not tags:
        return False
    recognized = recognized_tags(prefix)
    return any(tag in recognized for tag in tags)


def sanitize_tags(tags: Iterable[str]) -> list[str]:
    sanitized: list[str] = []
    for tag in tags:
        if not tag or len(tag) > MAX_TAG_LENGTH:
            continue
        value = tag.strip()
        if value and value not in sanitized:
            sanitized.append(value)
    return sanitized


def merge_tags(existing: Iterable[str] | None, new_tags: Iterable[str], prefix: str) -> MergeResult:
    current = list(existing or [])
    applied = sanitize_tags(sorted(new_tags))
    if not applied:
        return MergeResult(tags=current, applied=[], changed=False)
    recognized = recognized_tags(prefix)
    merged: list[str] = []
    for tag in [value for value in current if value not in recognized] + applied:
        if tag not in merged:
            merged.append(tag)
    return MergeResult(tags=merged, applied=applied, changed=merged != current)


def strip_prefix(tag: str, prefix: str) -> str:
    if prefix and tag.startswith(prefix):
        return tag[len(prefix):].strip()
    return tag


def build_tagline(tags: Iterable[str], prefix: str) -> str:
    warning = f"{WARNING_GLYPH} " + ", ".join(strip_prefix(tag, prefix) for tag in tags)
    return _truncate(warning, MAX_TAGLINE_LENGTH)


def build_overview_warning(tags: Iterable[str], prefix: str, overview: str | None) -> str:
    warning = f"{WARNING_GLYPH} Content Warning: " + ", ".join(strip_prefix(tag, prefix) for tag in tags)
    warning = _truncate(warning, MAX_OVERVIEW_WARNING_LENGTH)
    if not overview:
        return warning
    if overview.startswith(WARNING_GLYPH[0]):
        return overview
    return f"{warning}\n\n{overview}"


def apply_tags(item: MediaItem, new_tags: Iterable[str], prefix: str, set_tagline: bool) -> MergeResult:
    result = merge_tags(item.tags, new_tags, prefix)
    if result.is_noop:
        return result
    item.tags = result.tags
    if set_tagline and item.kind == "movie":
        item.tagline = build_tagline(result.applied, prefix)
    elif set_tagline and item.kind == "series":
        item.overview = build_overview_warning(result.applied, prefix, item.overview)
    return result


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - len(ELLIPSIS)] + ELLIPSIS
