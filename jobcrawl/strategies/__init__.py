"""
Extraction strategies and the fallback chain.

Strategies are looked up by the identifiers used in
strategy_priority_order.
"""

from typing import Dict, Optional, Sequence, Type

from ..base import SearchQuery
from ..config import TargetSite
from .api import ClientFactory, StructuredApiStrategy
from .base import ChainResult, ExtractionStrategy, StrategyFallbackChain, has_title
from .dom import BrowserDomStrategy
from .raw_html import RawHtmlPatternStrategy

# Registry of implemented strategies
# Add new acquisition techniques here as they are implemented
STRATEGY_REGISTRY: Dict[str, Type[ExtractionStrategy]] = {
    'api': StructuredApiStrategy,
    'dom': BrowserDomStrategy,
    'raw_html': RawHtmlPatternStrategy,
}


def build_chain(
    order: Sequence[str],
    site: TargetSite,
    query: SearchQuery,
    api_client_factory: Optional[ClientFactory] = None,
    timeout: float = 30.0,
    fetch_details: bool = False,
) -> StrategyFallbackChain:
    """
    Build a fallback chain from strategy identifiers.

    Args:
        fetch_details: Let the API strategy call the per-job detail endpoint

    Raises:
        ValueError: If an identifier is not in STRATEGY_REGISTRY
    """
    strategies = []
    for name in order:
        if name not in STRATEGY_REGISTRY:
            valid = ', '.join(STRATEGY_REGISTRY)
            raise ValueError(f"Unknown strategy: '{name}'. Valid strategies: {valid}")
        strategy_class = STRATEGY_REGISTRY[name]
        if strategy_class is StructuredApiStrategy:
            strategies.append(StructuredApiStrategy(site, query, client_factory=api_client_factory,
                                                    timeout=timeout, fetch_details=fetch_details))
        else:
            strategies.append(strategy_class(site, query))
    return StrategyFallbackChain(strategies)


__all__ = [
    'STRATEGY_REGISTRY',
    'build_chain',
    'ExtractionStrategy',
    'StrategyFallbackChain',
    'ChainResult',
    'has_title',
    'StructuredApiStrategy',
    'BrowserDomStrategy',
    'RawHtmlPatternStrategy',
]
