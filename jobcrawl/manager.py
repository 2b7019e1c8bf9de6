"""
Crawl Manager - runs one orchestrator per search keyword.

All orchestrators share one ProxyPool and one session provider (so the
stealth browser launches Chromium once). Runs can go sequentially or in
parallel; a failing run never affects the others.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .base import AbortReason, CrawlResult, CrawlStatus, SearchQuery, utcnow
from .config import CrawlConfig, Settings, get_site_config
from .crawlers import SessionProvider, StaticFetcher, StealthBrowser
from .orchestrator import CrawlOrchestrator
from .pacing import PacingPolicy
from .proxy_pool import ProxyPool
from .sinks import CrawlSink, MemorySink
from .strategies import build_chain
from .strategies.api import ClientFactory

logger = logging.getLogger(__name__)

SinkFactory = Callable[[str], CrawlSink]


def build_proxy_pool(settings: Settings) -> ProxyPool:
    """Proxy pool from JOBCRAWL_PROXIES and JOBCRAWL_PROXY_FILE."""
    credentials = None
    if settings.proxy_username:
        credentials = (settings.proxy_username, settings.proxy_password or '')

    pool = ProxyPool.from_strings(settings.proxies, credentials=credentials)
    if settings.proxy_file:
        pool.load_from_file(settings.proxy_file, credentials=credentials)
    logger.info(f"Proxy pool ready with {pool.total_count} endpoints")
    return pool


def create_sessions(settings: Settings) -> SessionProvider:
    """Session provider for the configured backend ('browser' or 'http')."""
    if settings.session_backend == 'browser':
        return StealthBrowser(headless=settings.headless, timeout=settings.request_timeout)
    if settings.session_backend == 'http':
        return StaticFetcher(timeout=settings.request_timeout)
    raise ValueError(f"Unknown session backend: '{settings.session_backend}'. Valid backends: browser, http")


class CrawlManager:
    """
    Manages and orchestrates crawls for several keywords.

    Usage:
        manager = CrawlManager(settings)

        # Run a single keyword
        result = await manager.crawl_keyword('Node.js')

        # Run several keywords concurrently
        results = await manager.crawl_all(['Node.js', 'React'], parallel=True)

        await manager.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sessions: Optional[SessionProvider] = None,
        proxy_pool: Optional[ProxyPool] = None,
        sink_factory: Optional[SinkFactory] = None,
        api_client_factory: Optional[ClientFactory] = None,
        pacing_factory: Optional[Callable[[], PacingPolicy]] = None,
    ):
        """
        Args:
            settings: Crawler settings (defaults to environment)
            sessions: Session provider shared by every run
            proxy_pool: Shared proxy pool (defaults to the configured proxies)
            sink_factory: Builds the sink for a keyword (defaults to MemorySink)
            api_client_factory: httpx client factory for the API strategy
            pacing_factory: Builds the pacing policy for a run
        """
        self.settings = settings or Settings()
        self.site = get_site_config(self.settings.site)
        self.config = CrawlConfig.from_settings(self.settings)
        self.sessions = sessions or create_sessions(self.settings)
        self.proxy_pool = proxy_pool if proxy_pool is not None else build_proxy_pool(self.settings)
        self.sink_factory = sink_factory or (lambda keyword: MemorySink())
        self.api_client_factory = api_client_factory
        self.pacing_factory = pacing_factory or PacingPolicy
        self.results: Dict[str, CrawlResult] = {}

    def build_orchestrator(self, keyword: str) -> CrawlOrchestrator:
        query = SearchQuery(keyword=keyword, experience_range=self.settings.experience_range)
        chain = build_chain(
            self.config.strategy_priority_order,
            self.site,
            query,
            api_client_factory=self.api_client_factory,
            timeout=self.settings.request_timeout,
            fetch_details=self.settings.fetch_details,
        )
        return CrawlOrchestrator(
            self.config,
            self.sessions,
            chain,
            self.site,
            query,
            proxy_pool=self.proxy_pool,
            pacing=self.pacing_factory(),
            sink=self.sink_factory(keyword),
            name=query.slug,
        )

    def _failed_result(self, keyword: str, error: Exception) -> CrawlResult:
        now = utcnow()
        return CrawlResult(
            name=keyword,
            status=CrawlStatus.ABORTED,
            listings=(),
            pages_visited=0,
            started_at=now,
            completed_at=now,
            abort_reason=AbortReason.UNEXPECTED_ERROR,
            error_details=(str(error),),
        )

    async def crawl_keyword(self, keyword: str, stop_event: Optional[asyncio.Event] = None) -> CrawlResult:
        """
        Crawl a single keyword.

        Returns:
            CrawlResult (an aborted one if the run could not even be built)
        """
        logger.info(f"Starting crawl for keyword '{keyword}'")
        try:
            orchestrator = self.build_orchestrator(keyword)
            result = await orchestrator.run(stop_event=stop_event, timeout=self.settings.run_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Crawl failed for '{keyword}': {e}")
            result = self._failed_result(keyword, e)

        self.results[keyword] = result
        return result

    async def crawl_all(
        self,
        keywords: List[str],
        parallel: bool = False,
        stop_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, CrawlResult]:
        """
        Crawl several keywords.

        Args:
            keywords: Search keywords
            parallel: Run the orchestrators concurrently
            stop_event: Stops every run when set

        Returns:
            Dictionary mapping keyword to CrawlResult
        """
        logger.info(f"Starting crawl for {len(keywords)} keywords: {keywords}")

        if parallel:
            tasks = [self.crawl_keyword(keyword, stop_event) for keyword in keywords]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            for keyword, result in zip(keywords, results):
                if isinstance(result, BaseException):
                    self.results[keyword] = self._failed_result(keyword, result)
        else:
            for keyword in keywords:
                await self.crawl_keyword(keyword, stop_event)
                if stop_event is not None and stop_event.is_set():
                    logger.warning("Stop requested, skipping remaining keywords")
                    break

        return self.results

    def get_results_summary(self) -> Dict:
        """
        Get summary of all crawl results.

        Returns:
            Summary dictionary with totals
        """
        if not self.results:
            return {
                'total_runs': 0,
                'completed': 0,
                'aborted': 0,
                'total_listings': 0,
                'pages_visited': 0,
            }

        completed = sum(1 for r in self.results.values() if r.success)

        return {
            'total_runs': len(self.results),
            'completed': completed,
            'aborted': len(self.results) - completed,
            'total_listings': sum(r.total for r in self.results.values()),
            'pages_visited': sum(r.pages_visited for r in self.results.values()),
            'proxies_available': self.proxy_pool.available_count,
            'runs': {k: v.to_dict() for k, v in self.results.items()},
        }

    async def close(self) -> None:
        """Release resources shared by the runs (the browser, if any)."""
        await self.sessions.shutdown()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
