"""
Crawl orchestrator.

Drives one search through the state machine

    INIT -> ACQUIRING -> FETCHING -> CLASSIFYING -> EXTRACTING -> PAGINATING
         -> {COMPLETED, ABORTED}

one page at a time. Every wait (page load, pacing delay, CAPTCHA wait,
interaction replay) is a suspension point that observes the run's stop
signal, so a stop or timeout ends the run promptly with whatever was
collected so far.
"""

import asyncio
import logging
from collections import Counter
from typing import Awaitable, Callable, List, Optional, Set, Tuple, TypeVar

from .base import (
    AbortReason,
    Colors,
    CrawlAborted,
    CrawlCancelled,
    CrawlPhase,
    CrawlResult,
    CrawlState,
    CrawlStatus,
    Identity,
    Listing,
    NoProxyAvailable,
    PageStatus,
    SearchQuery,
    SessionContext,
    SessionError,
    utcnow,
)
from .config import BROWSER_HEADERS, USER_AGENTS, CrawlConfig, TargetSite
from .crawlers.base import SessionProvider
from .detection import BlockDetector
from .pacing import PacingPolicy
from .proxy_pool import ProxyPool
from .sinks import CrawlSink, MemorySink
from .strategies.base import ChainResult, StrategyFallbackChain
from .utils.normalizers import RecordNormalizer

T = TypeVar('T')


class CrawlOrchestrator:
    """
    Runs one crawl to a terminal status.

    Usage:
        orchestrator = CrawlOrchestrator(config, StaticFetcher(), chain, site, query,
                                         proxy_pool=pool, sink=CsvSink('out.csv'))
        result = await orchestrator.run(timeout=600)
        print(result.label, result.total)

    run() never raises for crawl failures: blocks, proxy exhaustion, stops,
    timeouts and unexpected errors all end in a CrawlResult whose status is
    Completed or Aborted with a reason.
    """

    def __init__(
        self,
        config: CrawlConfig,
        sessions: SessionProvider,
        chain: StrategyFallbackChain,
        site: TargetSite,
        query: SearchQuery,
        proxy_pool: Optional[ProxyPool] = None,
        detector: Optional[BlockDetector] = None,
        pacing: Optional[PacingPolicy] = None,
        normalizer: Optional[RecordNormalizer] = None,
        sink: Optional[CrawlSink] = None,
        name: Optional[str] = None,
        identity_factory: Optional[Callable[[], Identity]] = None,
    ):
        self.config = config
        self.sessions = sessions
        self.chain = chain
        self.site = site
        self.query = query
        self.proxy_pool = proxy_pool
        self.detector = detector or BlockDetector()
        self.pacing = pacing or PacingPolicy()
        self.normalizer = normalizer or RecordNormalizer(site.base_url, site.job_id_pattern)
        self.sink = sink if sink is not None else MemorySink()
        self.name = name or query.slug or 'crawl'
        self.identity_factory = identity_factory or self._random_identity

        self.logger = logging.getLogger(f"crawler.{self.name}")
        self.phase = CrawlPhase.INIT
        self.state = CrawlState(target_count=config.target_result_count)
        self.strategy_usage: Counter = Counter()
        self.error_details: List[str] = []

        self._ctx: Optional[SessionContext] = None
        self._seen: Set[str] = set()
        self._stop = asyncio.Event()
        self._timed_out = False
        self._warned_direct = False

    def _random_identity(self) -> Identity:
        headers = {**BROWSER_HEADERS, 'Referer': self.site.base_url}
        return Identity.random(USER_AGENTS, headers, rng=self.pacing.rng)

    def _set_phase(self, phase: CrawlPhase) -> None:
        if phase is not self.phase:
            self.logger.debug(f"{self.phase.value} -> {phase.value}")
            self.phase = phase

    # ============================================================
    # STOP SIGNAL
    # ============================================================

    def stop(self) -> None:
        """Request an orderly stop; the run ends as Aborted:Cancelled."""
        self._stop.set()

    def _on_timeout(self) -> None:
        self._timed_out = True
        self._stop.set()

    def _guard(self) -> None:
        if self._stop.is_set():
            reason = AbortReason.TIMEOUT if self._timed_out else AbortReason.CANCELLED
            raise CrawlCancelled(reason, f"crawl stopped ({reason.value})")

    async def _sleep(self, seconds: float) -> None:
        """Pacing wait that ends early when a stop is requested."""
        self._guard()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self._guard()

    async def _until_stopped(self, awaitable: Awaitable[T]) -> T:
        """Await an operation, abandoning it if a stop is requested first."""
        self._guard()
        task = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        if task.cancelled():
            self._guard()
        return task.result()

    async def _watch(self, stop_event: asyncio.Event) -> None:
        await stop_event.wait()
        self._stop.set()

    def _delay(self, bounds: Tuple[float, float]) -> float:
        return self.pacing.delay(*bounds)

    # ============================================================
    # SESSIONS
    # ============================================================

    async def _acquire(self) -> SessionContext:
        """Return the open session, opening one on a fresh proxy if needed."""
        if self._ctx is not None and not self._ctx.closed:
            return self._ctx

        self._set_phase(CrawlPhase.ACQUIRING)
        proxy = None
        if self.proxy_pool is not None:
            try:
                proxy = self.proxy_pool.next()
            except NoProxyAvailable as e:
                if self.config.require_proxy:
                    raise CrawlAborted(AbortReason.RESOURCE_EXHAUSTED, str(e))
                if not self._warned_direct:
                    self.logger.warning(f"{e}, continuing without a proxy")
                    self._warned_direct = True
        elif self.config.require_proxy:
            raise CrawlAborted(AbortReason.RESOURCE_EXHAUSTED, "proxies are required but no pool was given")

        try:
            self._ctx = await self._until_stopped(self.sessions.open(proxy, self.identity_factory()))
        except SessionError as e:
            if self.proxy_pool is not None:
                self.proxy_pool.report_failure(proxy)
            raise CrawlAborted(AbortReason.RESOURCE_EXHAUSTED, str(e))

        self.logger.debug(f"Session {self._ctx.session_id} via {proxy or 'direct connection'}")
        return self._ctx

    async def _release_session(self) -> None:
        ctx, self._ctx = self._ctx, None
        if ctx is not None:
            await self.sessions.close(ctx)

    # ============================================================
    # PAGE PROCESSING
    # ============================================================

    async def _resolve_captcha(self, ctx: SessionContext) -> Tuple[PageStatus, Optional[str]]:
        """
        Wait for a CAPTCHA to be cleared and re-classify the page.

        Returns:
            (status, error); a session failure during the wait is a
            TRANSPORT_ERROR so the page is retried on a fresh session
        """
        ceiling = self.config.captcha_wait_ceiling
        self.logger.warning(f"{Colors.yellow('[CAPTCHA]')} page {ctx.page_index}: "
                            f"waiting up to {ceiling:.0f}s for resolution")
        try:
            outcome = await self._until_stopped(self.sessions.await_resolution(ctx, ceiling))
        except CrawlAborted:
            raise
        except Exception as e:
            self.logger.warning(f"{Colors.yellow('[CAPTCHA]')} session failed while waiting: {e}")
            return PageStatus.TRANSPORT_ERROR, str(e)
        status = self.detector.classify_outcome(outcome)
        if status is PageStatus.CAPTCHA:
            self.logger.warning(f"{Colors.yellow('[CAPTCHA]')} still unresolved after {ceiling:.0f}s")
        return status, outcome.error

    async def _interact(self, ctx: SessionContext) -> None:
        """Replay an interaction plan; a failed replay never costs the page."""
        try:
            await self._until_stopped(self.sessions.interact(ctx, self.pacing.interaction_plan()))
        except CrawlAborted:
            raise
        except Exception as e:
            self.logger.warning(f"Interaction replay failed on page {ctx.page_index}: {e}")

    async def _crawl_page(self, url: str) -> Optional[ChainResult]:
        """
        Load and extract one results page.

        Returns:
            ChainResult from the fallback chain, or None when every attempt
            failed on CAPTCHAs or transport errors (an empty page)

        Raises:
            CrawlAborted: PersistentBlock once the attempt budget is spent on
                          a page that was blocked at least once
        """
        page_index = self.state.current_page_index
        attempts = self.config.attempts_per_page
        blocked = 0

        for attempt in range(1, attempts + 1):
            ctx = await self._acquire()
            ctx.page_index = page_index

            self._set_phase(CrawlPhase.FETCHING)
            await self._sleep(self._delay(self.config.page_delay))
            outcome = await self._until_stopped(self.sessions.navigate(ctx, url))
            await self._sleep(self._delay(self.config.settle_delay))

            self._set_phase(CrawlPhase.CLASSIFYING)
            status = self.detector.classify_outcome(outcome)
            error = outcome.error
            if status is PageStatus.CAPTCHA:
                status, error = await self._resolve_captcha(ctx)

            if status in (PageStatus.OK, PageStatus.EMPTY):
                if self.proxy_pool is not None:
                    self.proxy_pool.report_success(ctx.proxy)
                if status is PageStatus.OK and self.config.simulate_interaction:
                    await self._interact(ctx)
                self._set_phase(CrawlPhase.EXTRACTING)
                return await self._until_stopped(self.chain.run(ctx))

            if status is PageStatus.BLOCKED:
                blocked += 1
            detail = f"page {page_index} attempt {attempt}/{attempts}: {status.value}"
            if error:
                detail += f" ({error})"
            self.error_details.append(detail)
            self.logger.warning(f"{Colors.red('[' + status.value.upper() + ']')} {detail} "
                                f"via {ctx.proxy or 'direct connection'}")

            if self.proxy_pool is not None:
                self.proxy_pool.report_failure(ctx.proxy)
            await self._release_session()

        if blocked:
            raise CrawlAborted(
                AbortReason.PERSISTENT_BLOCK,
                f"page {page_index} still blocked after {attempts} attempt(s)",
            )
        self.logger.warning(f"Page {page_index} unavailable after {attempts} attempt(s), treating as empty")
        return None

    def _collect(self, chain_result: Optional[ChainResult]) -> int:
        """
        Normalize, de-duplicate and accept the page's records.

        Returns:
            Number of new listings found on the page (before truncation)
        """
        if chain_result is None or not chain_result.succeeded:
            return 0

        self.state.strategy_in_use = chain_result.used_strategy
        self.strategy_usage[chain_result.used_strategy] += 1

        fresh: List[Listing] = []
        for idx, raw in enumerate(chain_result.records, 1):
            try:
                listing = self.normalizer.normalize(raw)
            except Exception as e:
                self.logger.warning(f"   {Colors.red('[ERR]')} record #{idx}: {e}")
                continue
            if self.config.deduplicate:
                if listing.key in self._seen:
                    self.logger.debug(f"Duplicate listing skipped: {listing.key}")
                    continue
                self._seen.add(listing.key)
            fresh.append(listing)

        accepted = self.state.accept(fresh)
        for listing in accepted:
            self.sink.emit(listing)

        self.logger.info(
            f"{Colors.bold(f'[page {self.state.current_page_index}]')} "
            f"{Colors.green(f'{len(accepted)} accepted')} via {chain_result.used_strategy} "
            f"({len(self.state.collected)}/{self.state.target_count})"
        )
        return len(fresh)

    async def _crawl(self) -> None:
        url = self.site.search_url(self.query, self.state.current_page_index)

        while True:
            chain_result = await self._crawl_page(url)
            self.state.pages_visited += 1
            found = self._collect(chain_result)

            self._set_phase(CrawlPhase.PAGINATING)
            if self.state.is_satisfied:
                self.logger.info(f"Target of {self.state.target_count} listings reached")
                return

            hint = chain_result.pagination if chain_result is not None else None
            if found and hint is not None and hint.has_next:
                self.state.consecutive_failures = 0
                next_index = hint.page_number or self.state.current_page_index + 1
                url = hint.next_url or self.site.search_url(self.query, next_index)
            else:
                self.state.consecutive_failures += 1
                if self.state.consecutive_failures >= self.config.max_consecutive_empty_pages:
                    self.logger.info(
                        f"{self.state.consecutive_failures} consecutive pages without new listings, "
                        f"stopping with {len(self.state.collected)} collected"
                    )
                    return
                next_index = self.state.current_page_index + 1
                url = self.site.search_url(self.query, next_index)

            self.state.current_page_index = next_index

    # ============================================================
    # RUN
    # ============================================================

    async def run(self, stop_event: Optional[asyncio.Event] = None,
                  timeout: Optional[float] = None) -> CrawlResult:
        """
        Crawl until the target count is reached or the run ends early.

        Args:
            stop_event: External stop signal; setting it ends the run as
                        Aborted:Cancelled
            timeout: Seconds before the run ends as Aborted:Timeout

        Returns:
            CrawlResult with the collected listings and terminal status
        """
        if self.phase is not CrawlPhase.INIT:
            raise RuntimeError(f"Orchestrator {self.name} has already run")

        started_at = utcnow()
        status, reason = CrawlStatus.COMPLETED, None
        cancelled = False
        self.logger.info(f"Starting crawl for '{self.query.keyword}' on {self.site.name} "
                         f"(target {self.state.target_count}, strategies {', '.join(self.chain.names)})")

        loop = asyncio.get_running_loop()
        timer = loop.call_later(timeout, self._on_timeout) if timeout is not None else None
        watcher = asyncio.ensure_future(self._watch(stop_event)) if stop_event is not None else None

        try:
            await self._crawl()
        except CrawlAborted as e:
            status, reason = CrawlStatus.ABORTED, e.reason
            self.error_details.append(str(e))
            self.logger.error(f"Crawl aborted ({e.reason.value}): {e}")
        except asyncio.CancelledError:
            cancelled = True
            status, reason = CrawlStatus.ABORTED, AbortReason.CANCELLED
            self.logger.warning("Crawl task cancelled")
        except Exception as e:
            status, reason = CrawlStatus.ABORTED, AbortReason.UNEXPECTED_ERROR
            self.error_details.append(f"{type(e).__name__}: {e}")
            self.logger.error(f"Crawl failed: {e}")
        finally:
            if timer is not None:
                timer.cancel()
            if watcher is not None:
                watcher.cancel()
            await self._release_session()

        result = self._finish(status, reason, started_at)
        if cancelled:
            raise asyncio.CancelledError()
        return result

    def _finish(self, status: CrawlStatus, reason: Optional[AbortReason], started_at) -> CrawlResult:
        self._set_phase(CrawlPhase.COMPLETED if status is CrawlStatus.COMPLETED else CrawlPhase.ABORTED)
        result = CrawlResult(
            name=self.name,
            status=status,
            listings=tuple(self.state.collected),
            pages_visited=self.state.pages_visited,
            started_at=started_at,
            completed_at=utcnow(),
            abort_reason=reason,
            strategy_usage=dict(self.strategy_usage),
            error_details=tuple(self.error_details),
        )

        try:
            self.sink.finalize(result.summary())
        except Exception as e:
            self.logger.error(f"Sink finalize failed: {e}")

        if result.success:
            icon, label = "✅", Colors.green(result.label)
        else:
            icon, label = "❌", Colors.red(result.label)
        self.logger.info(
            f"{icon} Crawl {label} in {result.duration_seconds:.1f}s: "
            f"{result.total} listings from {result.pages_visited} page(s)"
        )
        return result
