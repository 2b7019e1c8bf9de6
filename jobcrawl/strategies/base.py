"""
Extraction strategy interface and the fallback chain.

A strategy turns a live session into raw listing records plus a pagination
hint. The chain tries strategies in priority order until one yields a
record with a title.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..base import (
    NO_PAGINATION,
    PaginationHint,
    RawRecord,
    SearchQuery,
    SessionContext,
    StrategyResult,
)
from ..config import TargetSite
from ..utils.normalizers import MISSING_MARKERS

logger = logging.getLogger(__name__)


def has_title(record: RawRecord) -> bool:
    title = record.get('title') if hasattr(record, 'get') else None
    return isinstance(title, str) and bool(title.strip()) and title.strip().lower() not in MISSING_MARKERS


class ExtractionStrategy(ABC):
    """
    Abstract base class for extraction strategies.

    Subclasses must set `name` and implement extract(). Failures of a single
    card must be logged and skipped inside extract(), never allowed to drop
    the rest of the page.
    """

    # Stable identifier used in strategy_priority_order, e.g. "api", "dom"
    name: str = ""

    def __init__(self, site: TargetSite, query: SearchQuery):
        self.site = site
        self.query = query

    @abstractmethod
    async def extract(self, ctx: SessionContext) -> StrategyResult:
        """
        Extract raw records from the current page of a session.

        Args:
            ctx: Open session; ctx.last_outcome holds the loaded page and
                 ctx.page_index the results page number

        Returns:
            StrategyResult with records, pagination hint and optional error
        """
        pass

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


@dataclass
class ChainResult:
    """Outcome of running the fallback chain on one page."""
    records: List[RawRecord] = field(default_factory=list)
    used_strategy: Optional[str] = None
    pagination: PaginationHint = NO_PAGINATION
    attempted: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.used_strategy is not None


class StrategyFallbackChain:
    """
    Ordered strategies, first usable result wins.

    Zero records, records without titles and exceptions all fall through to
    the next strategy. When every strategy fails the chain returns an empty
    result with used_strategy=None; that is a valid outcome, not an error.
    """

    def __init__(self, strategies: Sequence[ExtractionStrategy]):
        if not strategies:
            raise ValueError("A fallback chain needs at least one strategy")
        self.strategies = list(strategies)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.strategies]

    async def run(self, ctx: SessionContext) -> ChainResult:
        result = ChainResult()
        for strategy in self.strategies:
            result.attempted.append(strategy.name)
            try:
                outcome = await strategy.extract(ctx)
            except Exception as e:
                result.errors[strategy.name] = str(e)
                logger.warning(f"Strategy '{strategy.name}' failed: {e}")
                continue

            if outcome.error:
                result.errors[strategy.name] = outcome.error
                logger.debug(f"Strategy '{strategy.name}' reported: {outcome.error}")

            if any(has_title(record) for record in outcome.records):
                result.records = list(outcome.records)
                result.used_strategy = strategy.name
                result.pagination = outcome.pagination
                logger.info(f"Strategy '{strategy.name}' yielded {len(outcome.records)} records")
                return result

            logger.info(f"Strategy '{strategy.name}' yielded no usable records, falling back")

        logger.warning(f"All strategies failed for page {ctx.page_index}: {', '.join(result.attempted)}")
        return result
