"""
Block and CAPTCHA detection.

Classifies page content using case-insensitive marker phrases. Denial
markers are checked first: a denial page that also mentions "robot" is
still a denial, not a solvable challenge.
"""

import re
from typing import Iterable, Pattern

from .base import PageOutcome, PageStatus

DEFAULT_CAPTCHA_MARKERS = ('captcha', 'verification', 'robot')
DEFAULT_BLOCK_MARKERS = ('access denied', '403', 'blocked')


def _marker_pattern(marker: str) -> str:
    pattern = re.escape(marker)
    if any(c.isdigit() for c in marker):
        # "403" must not match inside a job id like 140321
        pattern = rf'(?<!\d){pattern}(?!\d)'
    return pattern


def _compile(markers: Iterable[str]) -> Pattern:
    """Substring matcher for markers, so "recaptcha" and "robots" still hit."""
    alternatives = '|'.join(_marker_pattern(m.strip()) for m in markers if m.strip())
    if not alternatives:
        return re.compile(r'(?!x)x')  # matches nothing
    return re.compile(alternatives, re.IGNORECASE)


class BlockDetector:
    """Pure classifier of page content into OK / CAPTCHA / BLOCKED."""

    def __init__(
        self,
        captcha_markers: Iterable[str] = DEFAULT_CAPTCHA_MARKERS,
        block_markers: Iterable[str] = DEFAULT_BLOCK_MARKERS,
    ):
        self.captcha_markers = tuple(captcha_markers)
        self.block_markers = tuple(block_markers)
        self._captcha_re = _compile(self.captcha_markers)
        self._block_re = _compile(self.block_markers)

    def classify(self, content: str, title: str = "") -> PageStatus:
        content = content or ""
        title = title or ""
        if self._block_re.search(content) or self._block_re.search(title):
            return PageStatus.BLOCKED
        if self._captcha_re.search(content):
            return PageStatus.CAPTCHA
        return PageStatus.OK

    def classify_outcome(self, outcome: PageOutcome) -> PageStatus:
        """
        Classify a fetched page.

        Transport errors and denials already flagged by the session layer
        keep their status; a page without any payload is EMPTY.
        """
        if outcome.status in (PageStatus.TRANSPORT_ERROR, PageStatus.BLOCKED):
            return outcome.status
        if not (outcome.payload or '').strip():
            return PageStatus.EMPTY
        return self.classify(outcome.visible_text, outcome.title)
