"""
Tests for the crawl orchestrator state machine.
"""

import asyncio

import pytest

from jobcrawl.base import (
    AbortReason,
    CrawlPhase,
    CrawlStatus,
    PageStatus,
    PaginationHint,
    ProxyState,
    StrategyResult,
)
from jobcrawl.orchestrator import CrawlOrchestrator
from jobcrawl.proxy_pool import ProxyPool
from jobcrawl.sinks import MemorySink
from jobcrawl.strategies.base import StrategyFallbackChain

from fakes import (
    BLOCKED_HTML,
    CAPTCHA_HTML,
    FakeSessionProvider,
    FakeStrategy,
    make_records,
    page,
    paged_records,
)


@pytest.fixture
def build(fast_config, site, query, pacing):
    """Factory wiring an orchestrator out of fakes."""
    def make(sessions=None, strategies=None, proxy_pool=None, sink=None, **config):
        sessions = sessions or FakeSessionProvider()
        strategies = strategies or [FakeStrategy('api', paged_records(3))]
        sink = sink if sink is not None else MemorySink()
        orchestrator = CrawlOrchestrator(
            fast_config(**config),
            sessions,
            StrategyFallbackChain(strategies),
            site,
            query,
            proxy_pool=proxy_pool,
            pacing=pacing,
            sink=sink,
            name='test',
        )
        return orchestrator, sessions, sink
    return make


def two_proxy_pool():
    return ProxyPool.from_strings(['10.0.0.1:8080', '10.0.0.2:8080'])


class TestHappyPath:
    """Test runs that reach the target count."""

    def test_truncates_to_target(self, build, site, query):
        """target=5, 3 records per page: page 2's third record is dropped."""
        orchestrator, sessions, sink = build(target_result_count=5)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.label == "Completed"
        assert result.total == 5
        assert result.pages_visited == 2
        assert [l.title for l in result.listings] == [
            'Node Developer 1-1', 'Node Developer 1-2', 'Node Developer 1-3',
            'Node Developer 2-1', 'Node Developer 2-2',
        ]
        assert sessions.navigations == [
            site.search_url(query, 1),
            'https://www.naukri.com/node-js-jobs-2',
        ]
        assert sink.listings == list(result.listings)
        assert sink.finalize_calls == 1
        assert sink.summary.total_collected == 5
        assert sink.summary.pages_visited == 2
        assert result.strategy_usage == {'api': 2}
        assert orchestrator.phase is CrawlPhase.COMPLETED

    @pytest.mark.parametrize('target', [1, 2, 3, 4, 7, 10])
    def test_never_exceeds_target(self, build, target):
        orchestrator, _, _ = build(target_result_count=target)
        result = asyncio.run(orchestrator.run())
        assert result.status is CrawlStatus.COMPLETED
        assert result.total == target

    def test_single_session_reused_across_pages(self, build):
        orchestrator, sessions, _ = build(target_result_count=9)
        asyncio.run(orchestrator.run())
        assert len(sessions.opened) == 1
        assert len(sessions.navigations) == 3
        assert sessions.released == [sessions.opened[0].session_id]

    def test_page_number_hint(self, build, site, query):
        def respond(ctx):
            return StrategyResult(records=make_records(ctx.page_index, 2),
                                  pagination=PaginationHint(page_number=ctx.page_index + 1))
        orchestrator, sessions, _ = build(strategies=[FakeStrategy('api', respond)], target_result_count=4)

        result = asyncio.run(orchestrator.run())

        assert result.total == 4
        assert sessions.navigations == [site.search_url(query, 1), site.search_url(query, 2)]

    def test_proxy_reported_healthy(self, build):
        pool = two_proxy_pool()
        orchestrator, sessions, _ = build(proxy_pool=pool, target_result_count=3)
        asyncio.run(orchestrator.run())
        assert sessions.opened[0].proxy.state is ProxyState.HEALTHY

    def test_interaction_plan_replayed(self, build):
        orchestrator, sessions, _ = build(simulate_interaction=True, target_result_count=6)
        asyncio.run(orchestrator.run())
        assert sessions.interactions == 2


class TestPersistentBlock:
    """Test the per-page proxy budget."""

    def test_aborts_after_budget(self, build):
        """Every page blocked, 2 retries, 2 proxies: abort after 2 attempts."""
        pool = two_proxy_pool()
        strategy = FakeStrategy('api', paged_records(3))
        sessions = FakeSessionProvider([page(payload=BLOCKED_HTML)])
        orchestrator, _, sink = build(sessions=sessions, strategies=[strategy], proxy_pool=pool,
                                      max_proxy_retries_per_page=2)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.ABORTED
        assert result.abort_reason is AbortReason.PERSISTENT_BLOCK
        assert result.label == "Aborted:PersistentBlock"
        assert result.total == 0
        assert len(sessions.navigations) == 2
        assert [ctx.proxy for ctx in sessions.opened] == list(pool.endpoints)
        assert all(e.state is ProxyState.FAILED for e in pool.endpoints)
        assert len(sessions.released) == 2
        assert strategy.calls == 0
        assert sink.finalize_calls == 1
        assert sink.summary.label == "Aborted:PersistentBlock"

    def test_recovers_on_fresh_proxy(self, build):
        pool = two_proxy_pool()
        sessions = FakeSessionProvider([page(payload=BLOCKED_HTML), page()])
        orchestrator, _, _ = build(sessions=sessions, proxy_pool=pool, target_result_count=3)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        first, second = pool.endpoints
        assert first.state is ProxyState.FAILED
        assert second.state is ProxyState.HEALTHY

    def test_denial_status_counts_as_block(self, build):
        sessions = FakeSessionProvider([page(status=PageStatus.BLOCKED, payload="<html>slow down</html>",
                                             error="HTTP 429")])
        orchestrator, _, _ = build(sessions=sessions, max_proxy_retries_per_page=0)

        result = asyncio.run(orchestrator.run())

        assert result.abort_reason is AbortReason.PERSISTENT_BLOCK
        assert len(sessions.navigations) == 1  # a zero budget still makes one attempt
        assert any('HTTP 429' in detail for detail in result.error_details)


class TestEmptyPages:
    """Test the consecutive empty page threshold."""

    def test_completes_after_threshold(self, build):
        """No strategy ever yields: Completed with 0 records after 2 pages."""
        strategies = [FakeStrategy('api'), FakeStrategy('dom'), FakeStrategy('raw_html')]
        orchestrator, sessions, sink = build(strategies=strategies, max_consecutive_empty_pages=2)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 0
        assert result.pages_visited == 2
        assert len(sessions.navigations) == 2
        assert all(s.calls == 2 for s in strategies)
        assert sink.summary.label == "Completed"

    def test_records_without_hint_count_as_failure(self, build):
        strategy = FakeStrategy('api', paged_records(2, with_hint=False))
        orchestrator, _, _ = build(strategies=[strategy], target_result_count=10,
                                   max_consecutive_empty_pages=2)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 4
        assert result.pages_visited == 2

    def test_success_resets_failure_counter(self, build):
        def respond(ctx):
            if ctx.page_index % 2:
                return StrategyResult()
            return StrategyResult(records=make_records(ctx.page_index, 1),
                                  pagination=PaginationHint(page_number=ctx.page_index + 1))
        orchestrator, _, _ = build(strategies=[FakeStrategy('api', respond)], target_result_count=3,
                                   max_consecutive_empty_pages=2)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 3
        assert result.pages_visited == 6

    def test_duplicates_dropped(self, build):
        strategy = FakeStrategy('api', StrategyResult(records=make_records(1, 3),
                                                      pagination=PaginationHint(page_number=2)))
        orchestrator, _, sink = build(strategies=[strategy], target_result_count=10,
                                      max_consecutive_empty_pages=1)

        result = asyncio.run(orchestrator.run())

        assert result.total == 3
        assert result.pages_visited == 2
        assert len(sink.listings) == 3

    def test_bad_record_isolated(self, build):
        records = make_records(1, 3)
        records[1] = {'title': 'No link here'}
        strategy = FakeStrategy('api', StrategyResult(records=records))
        orchestrator, _, _ = build(strategies=[strategy], max_consecutive_empty_pages=1)

        result = asyncio.run(orchestrator.run())

        assert [l.title for l in result.listings] == ['Node Developer 1-1', 'Node Developer 1-3']


class TestCaptcha:
    """Test CAPTCHA waits."""

    def test_resolved_captcha_continues(self, build):
        pool = two_proxy_pool()
        sessions = FakeSessionProvider([page(payload=CAPTCHA_HTML), page()], resolutions=[page()])
        orchestrator, _, _ = build(sessions=sessions, proxy_pool=pool, target_result_count=3,
                                   captcha_wait_ceiling=5)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 3
        assert sessions.resolution_waits == [5]
        assert pool.endpoints[0].state is ProxyState.HEALTHY

    def test_unresolved_captcha_is_degraded(self, build):
        """Still a CAPTCHA after the wait: retried, then an empty page, not an abort."""
        pool = two_proxy_pool()
        sessions = FakeSessionProvider([page(payload=CAPTCHA_HTML)])
        strategy = FakeStrategy('api', paged_records(3))
        orchestrator, _, _ = build(sessions=sessions, strategies=[strategy], proxy_pool=pool,
                                   max_proxy_retries_per_page=2, max_consecutive_empty_pages=1)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 0
        assert result.pages_visited == 1
        assert len(sessions.resolution_waits) == 2
        assert strategy.calls == 0
        assert all(e.state is ProxyState.FAILED for e in pool.endpoints)

    def test_captcha_then_block_aborts(self, build):
        sessions = FakeSessionProvider([page(payload=CAPTCHA_HTML), page(payload=BLOCKED_HTML)])
        orchestrator, _, _ = build(sessions=sessions, max_proxy_retries_per_page=2)
        result = asyncio.run(orchestrator.run())
        assert result.abort_reason is AbortReason.PERSISTENT_BLOCK


class TestSessionFailures:
    """Session errors outside navigation stay within the page."""

    def test_interaction_failure_keeps_page(self, build):
        class BrokenReplay(FakeSessionProvider):
            async def interact(self, ctx, plan):
                raise RuntimeError("Execution context was destroyed")

        sessions = BrokenReplay()
        orchestrator, _, _ = build(sessions=sessions, simulate_interaction=True, target_result_count=3)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 3
        assert len(sessions.opened) == 1

    def test_captcha_wait_failure_retried(self, build):
        class ClosedDuringWait(FakeSessionProvider):
            async def await_resolution(self, ctx, timeout):
                raise RuntimeError("Target page has been closed")

        pool = two_proxy_pool()
        sessions = ClosedDuringWait([page(payload=CAPTCHA_HTML), page()])
        orchestrator, _, _ = build(sessions=sessions, proxy_pool=pool, target_result_count=3)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert result.total == 3
        assert len(sessions.opened) == 2
        assert pool.endpoints[0].state is ProxyState.FAILED
        assert any('Target page has been closed' in detail for detail in result.error_details)


class TestTransportErrors:
    """Test transport failures."""

    def test_retried_on_new_session(self, build):
        pool = two_proxy_pool()
        sessions = FakeSessionProvider([page(status=PageStatus.TRANSPORT_ERROR, payload="", error="timeout"),
                                        page()])
        orchestrator, _, _ = build(sessions=sessions, proxy_pool=pool, target_result_count=3)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert len(sessions.opened) == 2
        assert pool.endpoints[0].state is ProxyState.FAILED

    def test_empty_page_goes_to_extraction(self, build):
        sessions = FakeSessionProvider([page(payload="")])
        strategy = FakeStrategy('api')
        orchestrator, _, _ = build(sessions=sessions, strategies=[strategy], max_consecutive_empty_pages=1)

        result = asyncio.run(orchestrator.run())

        assert result.status is CrawlStatus.COMPLETED
        assert strategy.calls == 1


class TestResources:
    """Test proxy and session acquisition failures."""

    def test_required_proxy_with_empty_pool(self, build):
        orchestrator, sessions, sink = build(proxy_pool=ProxyPool(), require_proxy=True)

        result = asyncio.run(orchestrator.run())

        assert result.label == "Aborted:ResourceExhausted"
        assert sessions.opened == []
        assert sink.finalize_calls == 1

    def test_required_proxy_without_pool(self, build):
        orchestrator, _, _ = build(require_proxy=True)
        result = asyncio.run(orchestrator.run())
        assert result.abort_reason is AbortReason.RESOURCE_EXHAUSTED

    def test_optional_proxy_goes_direct(self, build):
        orchestrator, sessions, _ = build(proxy_pool=ProxyPool(), target_result_count=3)
        result = asyncio.run(orchestrator.run())
        assert result.status is CrawlStatus.COMPLETED
        assert sessions.opened[0].proxy is None

    def test_session_open_failure(self, build):
        orchestrator, _, _ = build(sessions=FakeSessionProvider(fail_open=True))
        result = asyncio.run(orchestrator.run())
        assert result.abort_reason is AbortReason.RESOURCE_EXHAUSTED
        assert 'browser crashed' in result.error_details[-1]


class TestCancellation:
    """Test stop signals, timeouts and task cancellation."""

    def test_timeout_keeps_partial_results(self, build):
        sessions = FakeSessionProvider()

        def respond(ctx):
            sessions.load_delay = 10  # the next page never finishes loading
            return paged_records(3)(ctx)

        orchestrator, _, sink = build(sessions=sessions, strategies=[FakeStrategy('api', respond)],
                                      target_result_count=10)

        result = asyncio.run(orchestrator.run(timeout=0.2))

        assert result.label == "Aborted:Timeout"
        assert result.total == 3
        assert len(sink.listings) == 3
        assert sink.summary.abort_reason is AbortReason.TIMEOUT
        assert sessions.released == [sessions.opened[0].session_id]

    def test_stop_event_between_pages(self, build):
        stop = asyncio.Event()

        def respond(ctx):
            stop.set()
            return paged_records(3)(ctx)

        orchestrator, sessions, _ = build(strategies=[FakeStrategy('api', respond)], target_result_count=10)

        async def scenario():
            return await orchestrator.run(stop_event=stop)

        result = asyncio.run(scenario())

        assert result.label == "Aborted:Cancelled"
        assert result.total == 3
        assert len(sessions.navigations) == 1

    def test_stop_during_page_load(self, build):
        sessions = FakeSessionProvider(load_delay=10)
        orchestrator, _, sink = build(sessions=sessions)

        async def scenario():
            task = asyncio.ensure_future(orchestrator.run())
            await asyncio.sleep(0.05)
            orchestrator.stop()
            return await asyncio.wait_for(task, timeout=2)

        result = asyncio.run(scenario())

        assert result.abort_reason is AbortReason.CANCELLED
        assert sink.finalize_calls == 1
        assert len(sessions.released) == 1

    def test_task_cancellation_finalizes(self, build):
        sessions = FakeSessionProvider(load_delay=10)
        orchestrator, _, sink = build(sessions=sessions)

        async def scenario():
            task = asyncio.ensure_future(orchestrator.run())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert sink.finalize_calls == 1
        assert sink.summary.abort_reason is AbortReason.CANCELLED
        assert len(sessions.released) == 1
        assert orchestrator.phase is CrawlPhase.ABORTED


class TestFailures:
    """Test that errors never escape run()."""

    def test_unexpected_error(self, build):
        class ExplodingSink(MemorySink):
            def emit(self, listing):
                raise RuntimeError("disk full")

        sink = ExplodingSink()
        orchestrator, sessions, _ = build(sink=sink)

        result = asyncio.run(orchestrator.run())

        assert result.label == "Aborted:UnexpectedError"
        assert 'disk full' in result.error_details[-1]
        assert sink.finalize_calls == 1
        assert len(sessions.released) == 1

    def test_run_only_once(self, build):
        orchestrator, _, _ = build(target_result_count=1)
        asyncio.run(orchestrator.run())
        with pytest.raises(RuntimeError):
            asyncio.run(orchestrator.run())


class TestSessionClose:
    """close() is idempotent and leaves the pool alone."""

    def test_close_twice(self, identity):
        pool = two_proxy_pool()
        sessions = FakeSessionProvider()

        async def scenario():
            proxy = pool.next()
            ctx = await sessions.open(proxy, identity)
            await sessions.navigate(ctx, 'https://www.naukri.com/node-js-jobs')
            await sessions.close(ctx)
            await sessions.close(ctx)
            return ctx

        ctx = asyncio.run(scenario())

        assert ctx.closed
        assert ctx.handle is None
        assert sessions.released == [ctx.session_id]
        assert all(e.state is ProxyState.UNKNOWN for e in pool.endpoints)

    def test_close_after_navigation_error(self, identity):
        sessions = FakeSessionProvider([page(status=PageStatus.TRANSPORT_ERROR, payload="", error="reset")])

        async def scenario():
            ctx = await sessions.open(None, identity)
            outcome = await sessions.navigate(ctx, 'https://www.naukri.com/node-js-jobs')
            await sessions.close(ctx)
            await sessions.close(ctx)
            return outcome

        assert asyncio.run(scenario()).status is PageStatus.TRANSPORT_ERROR
