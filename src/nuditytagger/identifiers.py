from __future__ import annotations

import re


IDENTIFIER_PREFIX = "tt"

_IDENTIFIER_RE = re.compile(r"tt\d{7,8}", re.IGNORECASE | re.ASCII)
_UNSAFE_SEQUENCES = ("..", "/", "\\")


class InvalidIdentifier(ValueError):
    pass


def normalize_identifier(raw: str | None) -> str:
    """Return the canonical ``tt`` + 7-8 digit form of ``raw``.

    Anything that could escape a path component is rejected before the
    pattern check, so callers may build filesystem and network paths from
    the result directly.
    """
    if raw is None:
        raise InvalidIdentifier("identifier is empty")
    value = str(raw).strip()
    if not value:
        raise InvalidIdentifier("identifier is empty")
    if any(sequence in value for sequence in _UNSAFE_SEQUENCES):
        raise InvalidIdentifier(f"identifier contains unsafe characters: {value!r}")
    if value[:2].lower() != IDENTIFIER_PREFIX:
        value = IDENTIFIER_PREFIX + value
    if not _IDENTIFIER_RE.fullmatch(value):
        raise InvalidIdentifier(f"identifier does not match tt + 7-8 digits: {value!r}")
    return value.lower()
