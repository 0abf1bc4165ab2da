from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

from .utils import parse_iso, utc_now


NO_NUDITY = "No Nudity"
BRIEF_NUDITY = "Brief Nudity"
PARTIAL_NUDITY = "Partial Nudity"
FULL_NUDITY = "Full Nudity"
SEXUAL_CONTENT = "Sexual Content"
GRAPHIC_SEXUAL_CONTENT = "Graphic Sexual Content"

ALL_CATEGORIES: tuple[str, ...] = (
    NO_NUDITY,
    BRIEF_NUDITY,
    PARTIAL_NUDITY,
    FULL_NUDITY,
    SEXUAL_CONTENT,
    GRAPHIC_SEXUAL_CONTENT,
)


class SeverityLevel(IntEnum):
    UNKNOWN = 0
    NONE = 1
    MILD = 2
    MODERATE = 3
    SEVERE = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: str | None) -> "SeverityLevel":
        if not value:
            return cls.UNKNOWN
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return cls.UNKNOWN


# Labels accepted as a tagging threshold; Unknown is never a valid minimum.
THRESHOLD_LABELS = ("None", "Mild", "Moderate", "Severe")


@dataclass(frozen=True)
class AdvisoryRecord:
    identifier: str
    severity: SeverityLevel = SeverityLevel.UNKNOWN
    descriptions: list[str] = field(default_factory=list)
    votes_none: int = 0
    votes_mild: int = 0
    votes_moderate: int = 0
    votes_severe: int = 0
    fetched_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "severity": self.severity.label,
            "descriptions": list(self.descriptions),
            "votes": {
                "none": self.votes_none,
                "mild": self.votes_mild,
                "moderate": self.votes_moderate,
                "severe": self.votes_severe,
            },
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AdvisoryRecord":
        votes = payload.get("votes") or {}
        return cls(
            identifier=str(payload["identifier"]),
            severity=SeverityLevel.parse(payload.get("severity")),
            descriptions=[str(item) for item in payload.get("descriptions") or []],
            votes_none=int(votes.get("none", 0)),
            votes_mild=int(votes.get("mild", 0)),
            votes_moderate=int(votes.get("moderate", 0)),
            votes_severe=int(votes.get("severe", 0)),
            fetched_at=parse_iso(str(payload["fetched_at"])),
        )


@dataclass
class MediaItem:
    name: str
    kind: str
    external_id: str | None = None
    series_external_id: str | None = None
    tags: list[str] = field(default_factory=list)
    tagline: str | None = None
    overview: str | None = None


@dataclass(frozen=True)
class Outcome:
    status: str
    reasons: list[str]
    identifier: str | None = None
    tags: list[str] = field(default_factory=list)
