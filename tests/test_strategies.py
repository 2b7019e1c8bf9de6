"""
Tests for extraction strategies and the fallback chain.
"""

import asyncio
import json

import httpx
import pytest

from jobcrawl.base import (
    NO_PAGINATION,
    Identity,
    PageOutcome,
    PageStatus,
    SessionContext,
    StrategyError,
    StrategyResult,
)
from jobcrawl.strategies import (
    STRATEGY_REGISTRY,
    BrowserDomStrategy,
    RawHtmlPatternStrategy,
    StrategyFallbackChain,
    StructuredApiStrategy,
    build_chain,
)
from jobcrawl.utils.extractors import first_match

from fakes import CARDS_HTML, FakeStrategy, make_records


def loaded_context(payload, url="https://www.naukri.com/node-js-jobs?k=Node.js", page_index=1):
    ctx = SessionContext(proxy=None, identity=Identity(user_agent="TestAgent/1.0"), page_index=page_index)
    ctx.current_url = url
    ctx.last_outcome = PageOutcome(status=PageStatus.OK, url=url, payload=payload)
    return ctx


class TestFirstMatch:
    """Test the generic first-match helper."""

    def test_returns_first_truthy(self):
        assert first_match(['a', 'bb', 'ccc'], lambda s: len(s) > 1 and s) == 'bb'

    def test_raising_probe_is_a_miss(self):
        def probe(value):
            if value == 'bad':
                raise ValueError("broken selector")
            return value.upper()
        assert first_match(['bad', 'good'], probe) == 'GOOD'

    def test_no_match(self):
        assert first_match(['a', 'b'], lambda s: None) is None
        assert first_match([], lambda s: s) is None


class TestFallbackChain:
    """Test strategy ordering and fallback."""

    def test_stops_at_first_success(self):
        """Only the second strategy yields data: the third is never invoked."""
        first = FakeStrategy('api', StrategyResult())
        second = FakeStrategy('dom', StrategyResult(records=make_records(1, 2)))
        third = FakeStrategy('raw_html', StrategyResult(records=make_records(1, 5)))
        chain = StrategyFallbackChain([first, second, third])

        result = asyncio.run(chain.run(loaded_context("<html></html>")))

        assert (first.calls, second.calls, third.calls) == (1, 1, 0)
        assert result.used_strategy == 'dom'
        assert len(result.records) == 2
        assert result.attempted == ['api', 'dom']

    def test_errors_fall_through(self):
        broken = FakeStrategy('api', RuntimeError("HTTP 503"))
        working = FakeStrategy('dom', StrategyResult(records=make_records(1, 1)))
        result = asyncio.run(StrategyFallbackChain([broken, working]).run(loaded_context("")))

        assert result.used_strategy == 'dom'
        assert 'HTTP 503' in result.errors['api']

    def test_untitled_records_fall_through(self):
        untitled = FakeStrategy('api', StrategyResult(records=[{'url': 'https://x/1', 'title': '  '}]))
        titled = FakeStrategy('dom', StrategyResult(records=make_records(1, 1)))
        result = asyncio.run(StrategyFallbackChain([untitled, titled]).run(loaded_context("")))
        assert result.used_strategy == 'dom'

    def test_all_failing_is_an_empty_result(self):
        strategies = [FakeStrategy('api', RuntimeError("boom")),
                      FakeStrategy('dom', StrategyResult(error="no cards")),
                      FakeStrategy('raw_html', StrategyResult())]
        result = asyncio.run(StrategyFallbackChain(strategies).run(loaded_context("")))

        assert result.used_strategy is None
        assert not result.succeeded
        assert result.records == []
        assert result.pagination is NO_PAGINATION
        assert result.attempted == ['api', 'dom', 'raw_html']

    def test_surfaces_successful_pagination(self):
        from jobcrawl.base import PaginationHint
        hint = PaginationHint(page_number=2)
        chain = StrategyFallbackChain([FakeStrategy('api', StrategyResult(records=make_records(1, 1),
                                                                          pagination=hint))])
        assert asyncio.run(chain.run(loaded_context(""))).pagination == hint

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            StrategyFallbackChain([])


class TestBuildChain:
    """Test building chains from identifiers."""

    def test_default_order(self, site, query):
        chain = build_chain(['api', 'dom', 'raw_html'], site, query)
        assert chain.names == ['api', 'dom', 'raw_html']
        assert [type(s) for s in chain.strategies] == [
            StructuredApiStrategy, BrowserDomStrategy, RawHtmlPatternStrategy]

    def test_custom_order(self, site, query):
        assert build_chain(['raw_html', 'api'], site, query).names == ['raw_html', 'api']

    def test_unknown_strategy(self, site, query):
        with pytest.raises(ValueError, match="Unknown strategy"):
            build_chain(['api', 'curl'], site, query)

    def test_registry(self):
        assert set(STRATEGY_REGISTRY) == {'api', 'dom', 'raw_html'}


SEARCH_RESPONSE = {
    'noOfJobs': 45,
    'jobDetails': [
        {
            'title': 'Node.js Developer',
            'jobId': '120324500123',
            'companyName': 'Acme Technologies',
            'jdURL': '/job-listings-node-js-developer-acme-pune-2-5-years-120324500123',
            'placeholders': [
                {'type': 'experience', 'label': '2-5 Yrs'},
                {'type': 'salary', 'label': 'Not disclosed'},
                {'type': 'location', 'label': 'Pune'},
            ],
            'tagsAndSkills': 'Node.js,Express,MongoDB',
            'jobDescription': '<p>Build REST APIs</p>',
            'footerPlaceholderLabel': '3 Days Ago',
        },
        'garbage entry',
        {
            'title': 'Backend Engineer',
            'jobId': '120324500456',
            'companyName': 'Globex',
            'minExp': 3,
            'maxExp': 6,
        },
    ],
}


def api_client_factory(handler):
    return lambda ctx: httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestStructuredApiStrategy:
    """Test the JSON search API strategy with a mock transport."""

    def test_maps_jobs(self, site, query):
        seen = {}

        def handler(request):
            seen['params'] = dict(request.url.params)
            return httpx.Response(200, json=SEARCH_RESPONSE)

        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler))
        result = asyncio.run(strategy.extract(loaded_context("")))

        assert seen['params']['keyword'] == 'Node.js'
        assert seen['params']['pageNo'] == '1'
        assert seen['params']['experience'] == '2'
        assert seen['params']['seoKey'] == 'node-js-jobs'

        assert len(result.records) == 2  # the malformed entry is skipped
        first, second = result.records
        assert first['title'] == 'Node.js Developer'
        assert first['company'] == 'Acme Technologies'
        assert first['experience'] == '2-5 Yrs'
        assert first['location'] == 'Pune'
        assert first['salary'] == 'Not disclosed'
        assert first['job_id'] == '120324500123'
        assert first['posted_date'] == '3 Days Ago'
        assert second['url'] == 'https://www.naukri.com/job-listings-120324500456'
        assert second['experience'] == '3-6 years'
        assert result.pagination.page_number == 2

    def test_last_page_has_no_hint(self, site, query):
        handler = lambda request: httpx.Response(200, json=SEARCH_RESPONSE)
        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler))
        result = asyncio.run(strategy.extract(loaded_context("", page_index=3)))
        assert result.pagination is NO_PAGINATION

    def test_non_json_body(self, site, query):
        handler = lambda request: httpx.Response(200, text="<html>Access Denied</html>")
        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler))
        result = asyncio.run(strategy.extract(loaded_context("")))
        assert result.records == []
        assert 'non-JSON' in result.error

    def test_http_error(self, site, query):
        handler = lambda request: httpx.Response(403, json={'message': 'recaptcha required'})
        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler))
        result = asyncio.run(strategy.extract(loaded_context("")))
        assert result.error == "Search API returned HTTP 403"

    def test_fetch_details(self, site, query):
        details = {'jobDetails': {'description': 'Full description',
                                  'keySkills': {'preferred': [{'label': 'Node.js'}],
                                                'other': [{'label': 'Redis'}]}}}

        def handler(request):
            if '/v4/job/' in request.url.path:
                return httpx.Response(200, content=json.dumps(details))
            return httpx.Response(200, json={'noOfJobs': 1, 'jobDetails': SEARCH_RESPONSE['jobDetails'][:1]})

        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler),
                                         fetch_details=True)
        record = asyncio.run(strategy.extract(loaded_context(""))).records[0]
        assert record['description'] == 'Full description'
        assert record['skills'] == ['Node.js', 'Redis']

    def test_detail_failure_keeps_record(self, site, query):
        def handler(request):
            if '/v4/job/' in request.url.path:
                return httpx.Response(500)
            return httpx.Response(200, json={'noOfJobs': 1, 'jobDetails': SEARCH_RESPONSE['jobDetails'][:1]})

        strategy = StructuredApiStrategy(site, query, client_factory=api_client_factory(handler),
                                         fetch_details=True)
        result = asyncio.run(strategy.extract(loaded_context("")))
        assert len(result.records) == 1
        assert result.records[0]['description'] == '<p>Build REST APIs</p>'


class TestBrowserDomStrategy:
    """Test card extraction from rendered HTML."""

    def test_extracts_cards(self, site, query):
        result = asyncio.run(BrowserDomStrategy(site, query).extract(loaded_context(CARDS_HTML)))

        assert len(result.records) == 2
        first, second = result.records
        assert first['title'] == 'Node Developer'
        assert first['url'] == 'https://www.naukri.com/job-listings-node-developer-acme-111'
        assert first['company'] == 'Acme'
        assert first['experience'] == '2-5 Yrs'
        assert first['location'] == 'Pune'
        assert first['skills'] == ['Node.js', 'AWS']
        assert first['description'] == 'Build & run APIs'
        assert first['job_id'] == '111'
        assert 'salary' not in first
        assert second['company'] == 'Globex'
        assert result.pagination.next_url == 'https://www.naukri.com/node-js-jobs-2?k=Node.js'

    def test_broken_card_is_skipped(self, site, query):
        payload = CARDS_HTML.replace(
            '</div>\n<div class="pagination">',
            '<div data-job-id="999"><span>Sponsored</span></div>\n</div>\n<div class="pagination">',
        )
        result = asyncio.run(BrowserDomStrategy(site, query).extract(loaded_context(payload)))
        assert [r['title'] for r in result.records] == ['Node Developer', 'Backend Engineer']

    def test_no_cards(self, site, query):
        result = asyncio.run(BrowserDomStrategy(site, query).extract(
            loaded_context("<html><body>No jobs found</body></html>")))
        assert result.records == []
        assert result.error

    def test_no_next_link(self, site, query):
        payload = CARDS_HTML.replace('class="fright"', 'class="fleft"')
        result = asyncio.run(BrowserDomStrategy(site, query).extract(loaded_context(payload)))
        assert result.pagination is NO_PAGINATION

    def test_nothing_loaded(self, site, query):
        ctx = SessionContext(proxy=None, identity=Identity(user_agent="TestAgent/1.0"))
        with pytest.raises(StrategyError):
            asyncio.run(BrowserDomStrategy(site, query).extract(ctx))


class TestRawHtmlPatternStrategy:
    """Test regex extraction over page source."""

    def test_extracts_cards(self, site, query):
        result = asyncio.run(RawHtmlPatternStrategy(site, query).extract(loaded_context(CARDS_HTML)))

        assert len(result.records) == 2
        first = result.records[0]
        assert first['title'] == 'Node Developer'
        assert first['url'] == 'https://www.naukri.com/job-listings-node-developer-acme-111'
        assert first['company'] == 'Acme'
        assert first['experience'] == '2-5 Yrs'
        assert first['location'] == 'Pune'
        assert first['job_id'] == '111'
        assert result.records[1]['title'] == 'Backend Engineer'
        assert result.pagination.next_url == 'https://www.naukri.com/node-js-jobs-2?k=Node.js'

    def test_falls_back_to_page_number(self, site, query):
        payload = CARDS_HTML.replace('class="fright"', 'class="fleft"')
        result = asyncio.run(RawHtmlPatternStrategy(site, query).extract(loaded_context(payload, page_index=4)))
        assert result.pagination.next_url is None
        assert result.pagination.page_number == 5

    def test_no_match(self, site, query):
        result = asyncio.run(RawHtmlPatternStrategy(site, query).extract(
            loaded_context("<html><body><p>Nothing here</p></body></html>")))
        assert result.records == []
        assert result.pagination is NO_PAGINATION
        assert result.error
