"""
Rendered DOM strategy.

Reads job cards out of the page the session layer loaded. With the
stealth browser this is the JavaScript-rendered DOM; with the static
fetcher it is the server-rendered HTML.

Card structure (naukri.com search results):
- Card: `div[data-job-id]` / `article.jobTuple` / `.srp-jobtuple-wrapper`
- Title: `a.title` (href = listing URL)
- Company: `a.comp-name`
- Experience / location / salary: `.expwdth`, `.locWdth`, `.sal-wrap span`
- Skills: `ul.tags-gt li`
- Pagination: `.pagination a.fright` or `a[rel="next"]`
"""

import logging
from typing import List
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ..base import NO_PAGINATION, PaginationHint, RawRecord, SessionContext, StrategyError, StrategyResult
from ..utils.extractors import first_match, select_all_text, select_href, select_text
from .base import ExtractionStrategy

logger = logging.getLogger(__name__)

# Fields whose value is a list of labels rather than one text
MULTI_VALUE_FIELDS = {'skills'}


class BrowserDomStrategy(ExtractionStrategy):
    """Parses job cards from the loaded page with BeautifulSoup."""

    name = "dom"

    def _find_cards(self, soup: BeautifulSoup) -> List[Tag]:
        return first_match(self.site.card_selectors, soup.select) or []

    def _parse_card(self, card: Tag, page_url: str) -> RawRecord:
        rules = self.site.field_selectors
        record: RawRecord = {}

        title = select_text(card, rules.get('title', []))
        href = select_href(card, rules.get('title', []))
        if not title and not href:
            raise StrategyError("card has neither a title nor a link")
        if title:
            record['title'] = title
        if href:
            record['url'] = urljoin(page_url, href)

        for field_name, selectors in rules.items():
            if field_name == 'title':
                continue
            if field_name in MULTI_VALUE_FIELDS:
                values = select_all_text(card, selectors)
                if values:
                    record[field_name] = values
            else:
                value = select_text(card, selectors)
                if value:
                    record[field_name] = value

        job_id = card.get('data-job-id')
        if job_id:
            record['job_id'] = job_id
        return record

    def _next_page(self, soup: BeautifulSoup, page_url: str) -> PaginationHint:
        def probe(selector):
            link = soup.select_one(selector)
            if link is None or 'disabled' in (link.get('class') or []):
                return None
            return link.get('href')

        href = first_match(self.site.next_page_selectors, probe)
        if not href or href.startswith('javascript:') or href == '#':
            return NO_PAGINATION
        return PaginationHint(next_url=urljoin(page_url, href))

    async def extract(self, ctx: SessionContext) -> StrategyResult:
        outcome = ctx.last_outcome
        if outcome is None or not outcome.payload:
            raise StrategyError("no page loaded in session")

        page_url = outcome.url or ctx.current_url or self.site.base_url
        soup = BeautifulSoup(outcome.payload, 'html.parser')
        cards = self._find_cards(soup)
        if not cards:
            return StrategyResult(error="no job cards matched any selector")

        logger.debug(f"Found {len(cards)} job cards on {page_url}")
        records: List[RawRecord] = []
        for idx, card in enumerate(cards, 1):
            try:
                records.append(self._parse_card(card, page_url))
            except Exception as e:
                logger.warning(f"Skipping job card #{idx}: {e}")

        return StrategyResult(records=records, pagination=self._next_page(soup, page_url))
