"""
Resilient job-listing crawler.

Collects structured job listings from a bot-protected job board through
interchangeable strategies (JSON API, rendered DOM, raw HTML patterns),
rotating proxies and identities when the target blocks it.
"""

from .base import (
    NOT_AVAILABLE,
    AbortReason,
    CrawlResult,
    CrawlStatus,
    Listing,
    PageStatus,
    SearchQuery,
)
from .config import CrawlConfig, Settings, get_site_config
from .detection import BlockDetector
from .manager import CrawlManager
from .orchestrator import CrawlOrchestrator
from .pacing import PacingPolicy
from .proxy_pool import ProxyPool
from .sinks import CsvSink, MemorySink
from .strategies import StrategyFallbackChain, build_chain

__version__ = "0.1.0"

__all__ = [
    'NOT_AVAILABLE',
    'AbortReason',
    'CrawlResult',
    'CrawlStatus',
    'Listing',
    'PageStatus',
    'SearchQuery',
    'CrawlConfig',
    'Settings',
    'get_site_config',
    'BlockDetector',
    'CrawlManager',
    'CrawlOrchestrator',
    'PacingPolicy',
    'ProxyPool',
    'CsvSink',
    'MemorySink',
    'StrategyFallbackChain',
    'build_chain',
]
