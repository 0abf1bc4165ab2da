from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .config import DEFAULT_CONFIG, KeywordsConfig
from .models import (
    BRIEF_NUDITY,
    FULL_NUDITY,
    GRAPHIC_SEXUAL_CONTENT,
    NO_NUDITY,
    PARTIAL_NUDITY,
    SEXUAL_CONTENT,
    AdvisoryRecord,
    SeverityLevel,
)


_TOKEN_SPLIT_RE = re.compile(r"[\W_]+")


@dataclass(frozen=True)
class KeywordSet:
    phrases: frozenset[str]
    words: frozenset[str]

    @classmethod
    def build(cls, keywords: Iterable[str]) -> "KeywordSet":
        phrases: set[str] = set()
        words: set[str] = set()
        for keyword in keywords:
            value = " ".join(keyword.lower().split())
            if not value:
                continue
            if " " in value:
                phrases.add(value)
            else:
                words.add(value)
        return cls(phrases=frozenset(phrases), words=frozenset(words))

    def matches(self, text: str, tokens: frozenset[str]) -> bool:
        if self.words & tokens:
            return True
        return any(phrase in text for phrase in self.phrases)


@dataclass(frozen=True)
class KeywordTable:
    full_nudity: KeywordSet
    graphic_sex: KeywordSet
    sexual_content: KeywordSet
    brief: KeywordSet

    @classmethod
    def from_config(cls, keywords: KeywordsConfig) -> "KeywordTable":
        return cls(
            full_nudity=KeywordSet.build(keywords.full_nudity),
            graphic_sex=KeywordSet.build(keywords.graphic_sex),
            sexual_content=KeywordSet.build(keywords.sexual_content),
            brief=KeywordSet.build(keywords.brief),
        )


@dataclass(frozen=True)
class Signals:
    has_full_nudity: bool
    has_graphic_sex: bool
    has_sex_content: bool
    is_brief: bool


DEFAULT_KEYWORDS = KeywordTable.from_config(KeywordsConfig(**DEFAULT_CONFIG["classifier"]["keywords"]))


def tokenize(text: str) -> frozenset[str]:
    return frozenset(token for token in _TOKEN_SPLIT_RE.split(text.lower()) if token)


def extract_signals(descriptions: Iterable[str], keywords: KeywordTable = DEFAULT_KEYWORDS) -> Signals:
    text = " ".join(" ".join(descriptions).lower().split())
    tokens = tokenize(text)
    return Signals(
        has_full_nudity=keywords.full_nudity.matches(text, tokens),
        has_graphic_sex=keywords.graphic_sex.matches(text, tokens),
        has_sex_content=keywords.sexual_content.matches(text, tokens),
        is_brief=keywords.brief.matches(text, tokens),
    )


def classify(
    record: AdvisoryRecord,
    min_severity: SeverityLevel,
    tag_prefix: str = "",
    keywords: KeywordTable = DEFAULT_KEYWORDS,
) -> set[str]:
    if record.severity < min_severity:
        if record.severity is SeverityLevel.NONE:
            return {tag_prefix + NO_NUDITY}
        return set()

    signals = extract_signals(record.descriptions, keywords)
    categories: set[str] = set()
    if record.severity is SeverityLevel.SEVERE:
        if signals.has_graphic_sex:
            categories.add(GRAPHIC_SEXUAL_CONTENT)
        categories.add(FULL_NUDITY)
    elif record.severity is SeverityLevel.MODERATE:
        if signals.has_sex_content:
            categories.add(SEXUAL_CONTENT)
        categories.add(FULL_NUDITY if signals.has_full_nudity else PARTIAL_NUDITY)
    elif record.severity is SeverityLevel.MILD:
        if signals.is_brief or not signals.has_sex_content:
            categories.add(BRIEF_NUDITY)
        else:
            categories.add(SEXUAL_CONTENT)
    elif record.severity is SeverityLevel.NONE:
        categories.add(NO_NUDITY)
    return {tag_prefix + category for category in categories}
