"""Marker grammar for the managed report-links section.

A managed section is the span between a start and an end marker that carry
the same format version:

    <!-- reportlink-v1-start -->
    ...
    <!-- reportlink-v1-end -->

Everything between (and including) the two markers is owned by reportlink.
Text outside the span belongs to humans and is never touched. Markers of any
version are recognised so that a newer release can still find, and replace,
sections written by an older one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

VERSION = 1

# Alert comments are existence-only; this literal is how they are found again.
ALERT_MARKER = "<!-- reportlink-alert -->"

_START_ANY = r"<!-- reportlink-v\d+-start -->"

# The tempered token refuses to run across another start marker, so an
# orphaned start left by a truncated edit never pairs with a later end.
_SECTION_RE = re.compile(
    r"<!-- reportlink-v(?P<version>\d+)-start -->"
    rf"(?:(?!{_START_ANY}).)*?"
    r"<!-- reportlink-v(?P=version)-end -->",
    re.DOTALL,
)


@dataclass(frozen=True)
class Span:
    """Location of a managed section: ``text[start:end]`` is the full section."""

    start: int
    end: int
    version: int

    def slice(self, text: str) -> str:
        return text[self.start : self.end]


def start_marker(version: int = VERSION) -> str:
    return f"<!-- reportlink-v{version}-start -->"


def end_marker(version: int = VERSION) -> str:
    return f"<!-- reportlink-v{version}-end -->"


def find_all(text: str | None) -> list[Span]:
    """Return every well-formed managed section in document order."""
    if not text:
        return []
    return [Span(m.start(), m.end(), int(m.group("version"))) for m in _SECTION_RE.finditer(text)]


def is_match(text: str | None) -> bool:
    """True iff a start and end marker of the same version appear in order."""
    return bool(text) and _SECTION_RE.search(text) is not None


def extract(text: str | None) -> Span | None:
    """Locate the managed section inside ``text``.

    A start marker with no matching end is not a match. When more than one
    section is present the first one wins and the anomaly is logged.
    """
    spans = find_all(text)
    if not spans:
        return None
    if len(spans) > 1:
        logger.warning(
            "Found %d managed sections in one document; using the first at offset %d.",
            len(spans),
            spans[0].start,
        )
    return spans[0]


def is_alert(text: str | None, marker: str = ALERT_MARKER) -> bool:
    return bool(text) and marker in text
