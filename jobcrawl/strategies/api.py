"""
Structured API strategy.

Calls the job board's JSON search endpoint directly. Cheapest and least
detectable route, so it runs first by default.

Response structure (search):
- `jobDetails`: list of jobs with `title`, `companyName`, `jobId`, `jdURL`,
  `placeholders` ([{type: experience|salary|location, label}]),
  `tagsAndSkills`, `jobDescription`, `footerPlaceholderLabel`
- `noOfJobs`: total hits for the query
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..base import NO_PAGINATION, PaginationHint, RawRecord, SearchQuery, SessionContext, StrategyError, StrategyResult
from ..config import TargetSite
from .base import ExtractionStrategy

logger = logging.getLogger(__name__)

ClientFactory = Callable[[SessionContext], httpx.AsyncClient]


def _labels(items: Any) -> List[str]:
    """Labels out of a list of {'label': ...} dicts or plain strings."""
    labels = []
    for item in items or []:
        if isinstance(item, dict):
            label = item.get('label') or item.get('name')
        else:
            label = item
        if label:
            labels.append(str(label))
    return labels


class StructuredApiStrategy(ExtractionStrategy):
    """
    Reads listings from the JSON search API.

    Args:
        site: Target site declarations (API URLs and headers)
        query: Search query
        client_factory: Builds the httpx client for a session (tests inject a
                        client backed by httpx.MockTransport)
        timeout: Request timeout in seconds
        fetch_details: Also call the per-job detail endpoint to fill in
                       description and skills
    """

    name = "api"

    def __init__(
        self,
        site: TargetSite,
        query: SearchQuery,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = 30.0,
        fetch_details: bool = False,
    ):
        super().__init__(site, query)
        self.client_factory = client_factory or self._default_client
        self.timeout = timeout
        self.fetch_details = fetch_details

    def _default_client(self, ctx: SessionContext) -> httpx.AsyncClient:
        headers = {**ctx.identity.http_headers(), **self.site.api_headers}
        if ctx.current_url:
            headers['Referer'] = ctx.current_url
        return httpx.AsyncClient(
            headers=headers,
            proxy=ctx.proxy.url if ctx.proxy else None,
            timeout=self.timeout,
            follow_redirects=True,
        )

    def search_params(self, page: int) -> Dict[str, Any]:
        params = {
            'noOfResults': self.site.api_page_size,
            'urlType': 'search_by_keyword',
            'searchType': 'adv',
            'keyword': self.query.keyword,
            'k': self.query.keyword,
            'seoKey': f"{self.query.slug}-jobs",
            'src': 'jobsearchDesk',
            'latLong': '',
            'pageNo': page,
        }
        low, _ = self.query.experience_bounds
        if low is not None:
            params['experience'] = low
        return params

    def _to_record(self, job: Dict[str, Any]) -> RawRecord:
        if not isinstance(job, dict):
            raise StrategyError(f"Unexpected job entry: {type(job).__name__}")

        placeholders = {
            p.get('type'): p.get('label')
            for p in job.get('placeholders') or []
            if isinstance(p, dict)
        }
        job_id = job.get('jobId')

        record: RawRecord = {'title': job.get('title') or ''}

        url = job.get('jdURL')
        if not url and job_id:
            url = f"{self.site.base_url.rstrip('/')}/job-listings-{job_id}"
        if url:
            record['url'] = url
        if job_id:
            record['job_id'] = str(job_id)
        if job.get('companyName'):
            record['company'] = job['companyName']

        if placeholders.get('experience'):
            record['experience'] = placeholders['experience']
        elif job.get('minExp') is not None or job.get('maxExp') is not None:
            record['experience'] = f"{job.get('minExp') or 0}-{job.get('maxExp') or 0} years"

        locations = placeholders.get('location') or _labels(job.get('locations'))
        if locations:
            record['location'] = locations

        salary = placeholders.get('salary') or job.get('salary')
        if salary:
            record['salary'] = salary

        skills = job.get('tagsAndSkills') or _labels(job.get('keySkills'))
        if skills:
            record['skills'] = skills
        if job.get('jobDescription'):
            record['description'] = job['jobDescription']

        posted = job.get('footerPlaceholderLabel') or job.get('createdDate')
        if posted:
            record['posted_date'] = str(posted)
        return record

    async def _fill_details(self, client: httpx.AsyncClient, record: RawRecord) -> None:
        job_id = record.get('job_id')
        if not job_id or not self.site.api_detail_url:
            return
        response = await client.get(self.site.api_detail_url.format(job_id=job_id))
        response.raise_for_status()
        details = response.json().get('jobDetails') or {}
        if details.get('description') or details.get('jobDescription'):
            record['description'] = details.get('description') or details['jobDescription']
        key_skills = details.get('keySkills')
        if isinstance(key_skills, dict):
            key_skills = (key_skills.get('preferred') or []) + (key_skills.get('other') or [])
        skills = _labels(key_skills)
        if skills:
            record['skills'] = skills

    async def extract(self, ctx: SessionContext) -> StrategyResult:
        if not self.site.api_search_url:
            raise StrategyError(f"{self.site.name} has no search API configured")

        page = ctx.page_index
        async with self.client_factory(ctx) as client:
            response = await client.get(self.site.api_search_url, params=self.search_params(page))
            if response.status_code != 200:
                return StrategyResult(error=f"Search API returned HTTP {response.status_code}")
            try:
                data = response.json()
            except ValueError:
                preview = response.text[:200].replace("\n", " ")
                return StrategyResult(error=f"Search API returned non-JSON body: {preview!r}")

            jobs = data.get('jobDetails') if isinstance(data, dict) else None
            if not jobs:
                return StrategyResult(error="Search API returned no jobDetails")

            records: List[RawRecord] = []
            for idx, job in enumerate(jobs, 1):
                try:
                    record = self._to_record(job)
                except Exception as e:
                    logger.warning(f"Skipping API job #{idx} on page {page}: {e}")
                    continue
                if self.fetch_details:
                    try:
                        await self._fill_details(client, record)
                    except Exception as e:
                        logger.debug(f"No details for job {record.get('job_id')}: {e}")
                records.append(record)

        total = data.get('noOfJobs')
        if isinstance(total, int) and page * self.site.api_page_size >= total:
            pagination = NO_PAGINATION
        else:
            pagination = PaginationHint(page_number=page + 1)

        logger.debug(f"Search API page {page}: {len(records)} records, total={total}")
        return StrategyResult(records=records, pagination=pagination)
