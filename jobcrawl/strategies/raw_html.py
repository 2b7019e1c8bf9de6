"""
Raw HTML pattern strategy.

Last resort when the API is closed and the card selectors have drifted:
runs regular expressions straight over the page source. Field patterns use
a `value` named group, and the title pattern also captures `url`.
"""

import html
import logging
import re
from typing import List
from urllib.parse import urljoin

from ..base import NO_PAGINATION, PaginationHint, RawRecord, SessionContext, StrategyError, StrategyResult
from ..utils.extractors import clean_text, first_match, search_pattern
from .base import ExtractionStrategy

logger = logging.getLogger(__name__)


class RawHtmlPatternStrategy(ExtractionStrategy):
    """Regex extraction over the raw page payload."""

    name = "raw_html"

    def _find_cards(self, payload: str) -> List[str]:
        return first_match(
            self.site.card_patterns,
            lambda pattern: re.findall(pattern, payload, re.IGNORECASE),
        ) or []

    def _parse_card(self, card: str, page_url: str) -> RawRecord:
        patterns = self.site.field_patterns
        record: RawRecord = {}

        title = search_pattern(card, patterns.get('title', []))
        url = search_pattern(card, patterns.get('title', []), group='url')
        title = clean_text(title)
        if not title and not url:
            raise StrategyError("card has neither a title nor a link")
        if title:
            record['title'] = title
        if url:
            record['url'] = urljoin(page_url, html.unescape(url))

        for field_name, field_rules in patterns.items():
            if field_name == 'title':
                continue
            value = clean_text(search_pattern(card, field_rules))
            if value:
                record[field_name] = value
        return record

    def _next_page(self, payload: str, page_url: str, page_index: int, found: bool) -> PaginationHint:
        href = search_pattern(payload, self.site.next_page_patterns, group='url')
        if href and not href.startswith('javascript:') and href != '#':
            return PaginationHint(next_url=urljoin(page_url, html.unescape(href)))
        if found:
            # No link in the source: fall back to the numbered results page
            return PaginationHint(page_number=page_index + 1)
        return NO_PAGINATION

    async def extract(self, ctx: SessionContext) -> StrategyResult:
        outcome = ctx.last_outcome
        if outcome is None or not outcome.payload:
            raise StrategyError("no page loaded in session")

        page_url = outcome.url or ctx.current_url or self.site.base_url
        cards = self._find_cards(outcome.payload)
        if not cards:
            return StrategyResult(error="no job card pattern matched")

        records: List[RawRecord] = []
        for idx, card in enumerate(cards, 1):
            try:
                records.append(self._parse_card(card, page_url))
            except Exception as e:
                logger.warning(f"Skipping raw card #{idx}: {e}")

        logger.debug(f"Raw HTML patterns matched {len(records)} of {len(cards)} cards")
        pagination = self._next_page(outcome.payload, page_url, ctx.page_index, bool(records))
        return StrategyResult(records=records, pagination=pagination)
