from __future__ import annotations

import html
import logging
import re
from datetime import datetime
from typing import Callable, Optional

from bs4 import BeautifulSoup, Tag

from ..models import AdvisoryRecord, SeverityLevel
from ..utils import log_event, utc_now


SECTION_ANCHOR_ID = "advisory-nudity"
SECTION_KEYWORD = "nudity"
MIN_DESCRIPTION_LENGTH = 11

_CONTAINER_TAGS = ["section", "div", "article"]
_HEADING_TAGS = ["h2", "h3", "h4"]
_DESCRIPTION_TAGS = ["li", "p"]
_HEADING_RE = re.compile(r"sex|nudity", re.IGNORECASE)
_SECTION_TITLE_RE = re.compile(r"sex\s*(?:&|and)\s*nudity", re.IGNORECASE)
_SEVERITY_ATTR_RE = re.compile(r"severity|rating|status", re.IGNORECASE)
_VOTE_ATTR_RE = re.compile(r"vote", re.IGNORECASE)
_SEVERITY_WORD_RE = re.compile(r"\b(severe|moderate|mild|none)\b", re.IGNORECASE)
_BOILERPLATE_RE = re.compile(r"^(?:edit|add|see more|see less)\b", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d[\d,]*")

# Checked in this order; the first keyword present wins.
SEVERITY_KEYWORDS: tuple[tuple[str, SeverityLevel], ...] = (
    ("severe", SeverityLevel.SEVERE),
    ("moderate", SeverityLevel.MODERATE),
    ("mild", SeverityLevel.MILD),
    ("none", SeverityLevel.NONE),
)

SectionFinder = Callable[[BeautifulSoup], Optional[Tag]]

logger = logging.getLogger("nuditytagger.parse")


def parse_advisory(markup: str, identifier: str, *, fetched_at: datetime | None = None) -> AdvisoryRecord:
    """Build an advisory record from a Parents Guide page.

    Never raises: markup without a recognizable Sex & Nudity section yields
    an ``UNKNOWN`` record with no descriptions.
    """
    fetched_at = fetched_at or utc_now()
    soup = BeautifulSoup(markup or "", "html.parser")
    section, strategy = find_section(soup)
    if section is None:
        log_event(logger, logging.INFO, "advisory_section_missing", identifier=identifier)
        return AdvisoryRecord(identifier=identifier, fetched_at=fetched_at)

    severity = extract_severity(section)
    descriptions = extract_descriptions(section)
    votes = extract_votes(section)
    if severity is SeverityLevel.UNKNOWN and not descriptions:
        log_event(logger, logging.INFO, "advisory_section_empty", identifier=identifier, strategy=strategy)
    else:
        log_event(
            logger,
            logging.DEBUG,
            "advisory_parsed",
            identifier=identifier,
            strategy=strategy,
            severity=severity.label,
            descriptions=len(descriptions),
        )
    return AdvisoryRecord(
        identifier=identifier,
        severity=severity,
        descriptions=descriptions,
        votes_none=votes.get(SeverityLevel.NONE, 0),
        votes_mild=votes.get(SeverityLevel.MILD, 0),
        votes_moderate=votes.get(SeverityLevel.MODERATE, 0),
        votes_severe=votes.get(SeverityLevel.SEVERE, 0),
        fetched_at=fetched_at,
    )


def find_section(soup: BeautifulSoup) -> tuple[Tag | None, str | None]:
    for finder in SECTION_FINDERS:
        section = finder(soup)
        if section is not None:
            return section, finder.__name__
    return None, None


def find_by_anchor(soup: BeautifulSoup) -> Tag | None:
    return soup.find(id=SECTION_ANCHOR_ID)


def find_by_id_keyword(soup: BeautifulSoup) -> Tag | None:
    for attr in ("id", "data-testid"):
        found = soup.find(attrs={attr: lambda value: bool(value) and SECTION_KEYWORD in value.lower()})
        if found is not None:
            return found
    return None


def find_by_heading(soup: BeautifulSoup) -> Tag | None:
    for names in (["section"], ["div", "article"]):
        matches = [
            container
            for container in soup.find_all(names)
            if _first_heading_matches(container)
        ]
        if matches:
            return _innermost_with_content(matches)
    return None


def find_by_title_text(soup: BeautifulSoup) -> Tag | None:
    node = soup.find(string=lambda text: bool(text) and _SECTION_TITLE_RE.search(text) is not None)
    if node is None:
        return None
    return node.find_parent(_CONTAINER_TAGS)


SECTION_FINDERS: tuple[SectionFinder, ...] = (
    find_by_anchor,
    find_by_id_keyword,
    find_by_heading,
    find_by_title_text,
)


def _first_heading_matches(container: Tag) -> bool:
    heading = container.find(_HEADING_TAGS)
    return heading is not None and _HEADING_RE.search(heading.get_text(" ", strip=True)) is not None


def _innermost_with_content(candidates: list[Tag]) -> Tag:
    with_content = [item for item in candidates if item.find(_DESCRIPTION_TAGS) is not None]
    if not with_content:
        return candidates[0]
    for candidate in with_content:
        if not any(_is_ancestor(candidate, other) for other in with_content if other is not candidate):
            return candidate
    return with_content[-1]


def _is_ancestor(candidate: Tag, other: Tag) -> bool:
    return any(parent is candidate for parent in other.parents)


def extract_severity(section: Tag) -> SeverityLevel:
    elements = section.find_all(_has_severity_attribute)
    leaves = [element for element in elements if element.find(_has_severity_attribute) is None]
    leaf_ids = {id(element) for element in leaves}
    for element in leaves + [element for element in elements if id(element) not in leaf_ids]:
        severity = severity_from_text(element.get_text(" ", strip=True))
        if severity is not SeverityLevel.UNKNOWN:
            return severity
    return severity_from_text(section.get_text(" ", strip=True))


def severity_from_text(text: str) -> SeverityLevel:
    lowered = text.lower()
    for keyword, level in SEVERITY_KEYWORDS:
        if re.search(rf"\b{keyword}\b", lowered):
            return level
    return SeverityLevel.UNKNOWN


def extract_descriptions(section: Tag) -> list[str]:
    descriptions: list[str] = []
    for element in section.find_all(_DESCRIPTION_TAGS):
        if element.find(_DESCRIPTION_TAGS) is not None:
            continue
        text = clean_text(element.get_text(" ", strip=True))
        if len(text) < MIN_DESCRIPTION_LENGTH or _BOILERPLATE_RE.match(text):
            continue
        descriptions.append(text)
    return descriptions


def clean_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", html.unescape(text)).strip()


def extract_votes(section: Tag) -> dict[SeverityLevel, int]:
    votes: dict[SeverityLevel, int] = {}
    for element in section.find_all(_has_vote_attribute):
        text = element.get_text(" ", strip=True)
        labels = {match.lower() for match in _SEVERITY_WORD_RE.findall(text)}
        count = _NUMBER_RE.search(text)
        if len(labels) != 1 or count is None:
            continue
        level = SeverityLevel.parse(labels.pop())
        votes.setdefault(level, int(count.group(0).replace(",", "")))
    return votes


def _has_severity_attribute(element: Tag) -> bool:
    if _has_vote_attribute(element):
        return False
    return any(_SEVERITY_ATTR_RE.search(value) for value in _attribute_values(element, ("class", "id", "data-testid")))


def _has_vote_attribute(element: Tag) -> bool:
    return any(_VOTE_ATTR_RE.search(value) for value in _attribute_values(element, ("class", "data-testid")))


def _attribute_values(element: Tag, attrs: tuple[str, ...]) -> list[str]:
    values: list[str] = []
    for attr in attrs:
        value = element.get(attr)
        if not value:
            continue
        values.append(" ".join(value) if isinstance(value, list) else str(value))
    return values
