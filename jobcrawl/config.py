"""
Crawler configuration.

- Settings: values loaded from environment variables (JOBCRAWL_*) / .env
- CrawlConfig: the validated values one orchestrator runs with
- TargetSite: URLs, headers and field rules for a job board
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

from pydantic_settings import BaseSettings

from .base import SearchQuery


# ============================================================
# IDENTITY
# ============================================================

USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0',
]

BROWSER_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate',  # Some sites have issues with brotli
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
    'Sec-Fetch-Dest': 'document',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-User': '?1',
    'Cache-Control': 'max-age=0',
}


# ============================================================
# TARGET SITES
# ============================================================

@dataclass
class TargetSite:
    """Declarations for one job board. Opaque to the orchestrator."""
    name: str
    base_url: str
    search_path: str                      # '{slug}' and '{page_suffix}' placeholders
    api_search_url: Optional[str] = None
    api_detail_url: Optional[str] = None  # '{job_id}' placeholder
    api_headers: Dict[str, str] = field(default_factory=dict)
    api_page_size: int = 20
    card_selectors: List[str] = field(default_factory=list)
    field_selectors: Dict[str, List[str]] = field(default_factory=dict)
    next_page_selectors: List[str] = field(default_factory=list)
    card_patterns: List[str] = field(default_factory=list)
    field_patterns: Dict[str, List[str]] = field(default_factory=dict)
    next_page_patterns: List[str] = field(default_factory=list)
    job_id_pattern: str = r'job-listings-([\w-]+)'

    def search_url(self, query: SearchQuery, page: int = 1) -> str:
        """URL of results page `page` for a query."""
        page_suffix = f"-{page}" if page > 1 else ""
        url = self.base_url.rstrip('/') + '/' + self.search_path.format(
            slug=query.slug, page_suffix=page_suffix,
        ).lstrip('/')
        params = {'k': query.keyword}
        low, _ = query.experience_bounds
        if low is not None:
            params['experience'] = low
        return f"{url}?{urlencode(params)}"


SITES = {
    'naukri': TargetSite(
        name='Naukri',
        base_url='https://www.naukri.com/',
        search_path='{slug}-jobs{page_suffix}',
        api_search_url='https://www.naukri.com/jobapi/v3/search',
        api_detail_url='https://www.naukri.com/jobapi/v4/job/{job_id}',
        api_headers={
            'Accept': 'application/json, text/plain, */*',
            'Accept-Language': 'en-US,en;q=0.9',
            'Referer': 'https://www.naukri.com/',
            'Origin': 'https://www.naukri.com',
            'appid': '109',
            'systemid': '109',
            'sec-fetch-dest': 'empty',
            'sec-fetch-mode': 'cors',
            'sec-fetch-site': 'same-site',
        },
        api_page_size=20,
        card_selectors=[
            'div[data-job-id]',
            'article.jobTuple',
            '.jobTupleWrapper',
            '.srp-jobtuple-wrapper',
            '.job-card',
            '.job-container',
            '.jobTuple',
            '.job-tuple',
        ],
        field_selectors={
            'title': ['a.title', 'a.jobTitle', '.jobTitleText a', '.title a', 'a.job-title'],
            'company': ['a.comp-name', 'a.companyName', 'a.company', '.companyInfo a', '.company-name', '.company'],
            'experience': ['.expwdth', '.exp-wrap span', '.experience', '.exp span', 'li.experience', '.exp'],
            'location': ['.locWdth', '.loc-wrap span', '.location', '.loc span', 'li.location', '.loc'],
            'salary': ['.sal-wrap span', '.salary', '.sal span', 'li.salary', '.sal'],
            'skills': ['ul.tags-gt li', 'ul.tags li', '.key-skill', '.chip'],
            'description': ['.job-desc', '.job-description', '.dang-inner-html'],
            'posted_date': ['.job-post-day', '.jd-stats .stat-value', '.type br + span', '.fleft.postedDate'],
        },
        next_page_selectors=[
            '.pagination a.fright',
            'a.styles_btn-secondary__2AsIP:last-child',
            'a[rel="next"]',
            '.pagination a.next',
        ],
        card_patterns=[
            r'<(?:article|div)[^>]*class="[^"]*(?:jobTuple|srp-jobtuple-wrapper)[^"]*"[^>]*>[\s\S]*?</(?:article|div)>\s*</div>\s*</div>',
            r'<div[^>]*data-job-id="[^"]*"[^>]*>[\s\S]*?</div>\s*</div>\s*</div>',
        ],
        field_patterns={
            'title': [
                r'<a[^>]*class="[^"]*title[^"]*"[^>]*href="(?P<url>[^"]*)"[^>]*>(?P<value>[\s\S]*?)</a>',
                r'<a[^>]*href="(?P<url>[^"]*)"[^>]*class="[^"]*title[^"]*"[^>]*>(?P<value>[\s\S]*?)</a>',
            ],
            'company': [r'<a[^>]*class="[^"]*(?:companyName|comp-name)[^"]*"[^>]*>(?P<value>[\s\S]*?)</a>'],
            'experience': [r'<(?:li|span)[^>]*class="[^"]*(?:experience|expwdth)[^"]*"[^>]*>(?P<value>[\s\S]*?)</(?:li|span)>'],
            'location': [r'<(?:li|span)[^>]*class="[^"]*(?:location|locWdth)[^"]*"[^>]*>(?P<value>[\s\S]*?)</(?:li|span)>'],
            'salary': [r'<(?:li|span)[^>]*class="[^"]*(?:salary|sal-wrap)[^"]*"[^>]*>(?P<value>[\s\S]*?)</(?:li|span)>'],
            'job_id': [r'data-job-id="(?P<value>[^"]+)"'],
        },
        next_page_patterns=[
            r'<a[^>]*class="[^"]*fright[^"]*"[^>]*href="(?P<url>[^"]+)"',
            r'<a[^>]*href="(?P<url>[^"]+)"[^>]*class="[^"]*fright[^"]*"',
            r'<a[^>]*rel="next"[^>]*href="(?P<url>[^"]+)"',
        ],
    ),
}


def get_site_config(site_key: str) -> TargetSite:
    """
    Get configuration for a site by its key.

    Raises:
        ValueError: If site_key is not found
    """
    if site_key not in SITES:
        valid_keys = ', '.join(sorted(SITES.keys()))
        raise ValueError(f"Unknown site: '{site_key}'. Valid sites: {valid_keys}")
    return SITES[site_key]


# ============================================================
# SETTINGS
# ============================================================

class Settings(BaseSettings):
    """Crawler settings loaded from environment variables."""

    # Search
    site: str = "naukri"
    search_keyword: str = "Node.js"
    experience_range: str = "2-5"
    results_limit: int = 50

    # Resilience budgets
    max_proxy_retries_per_page: int = 3
    max_consecutive_empty_pages: int = 2
    captcha_wait_ceiling: float = 120.0
    strategy_priority_order: List[str] = ["api", "dom", "raw_html"]
    run_timeout: Optional[float] = None

    # Proxies
    proxies: List[str] = []
    proxy_file: Optional[str] = None
    proxy_username: Optional[str] = None
    proxy_password: Optional[str] = None
    require_proxy: bool = False

    # Session layer
    session_backend: str = "browser"   # 'browser' (Playwright) or 'http' (httpx)
    headless: bool = True
    request_timeout: float = 30.0
    simulate_interaction: bool = True
    fetch_details: bool = True         # per-job detail calls for description and skills

    # Pacing (seconds)
    page_delay_min: float = 3.0
    page_delay_max: float = 5.0
    settle_delay_min: float = 1.0
    settle_delay_max: float = 2.0

    # Output
    output_file: str = "naukri_results.csv"

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None

    @property
    def log_path(self) -> Optional[Path]:
        return Path(self.log_file) if self.log_file else None

    class Config:
        env_prefix = "JOBCRAWL_"
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


@dataclass
class CrawlConfig:
    """Values one CrawlOrchestrator runs with."""
    target_result_count: int = 50
    max_proxy_retries_per_page: int = 3
    max_consecutive_empty_pages: int = 2
    captcha_wait_ceiling: float = 120.0
    strategy_priority_order: Tuple[str, ...] = ("api", "dom", "raw_html")
    require_proxy: bool = False
    page_delay: Tuple[float, float] = (3.0, 5.0)     # before each page load
    settle_delay: Tuple[float, float] = (1.0, 2.0)   # after each page load
    simulate_interaction: bool = True
    deduplicate: bool = True

    def __post_init__(self):
        if self.target_result_count <= 0:
            raise ValueError("target_result_count must be > 0")
        if self.max_proxy_retries_per_page < 0:
            raise ValueError("max_proxy_retries_per_page must be >= 0")
        if self.max_consecutive_empty_pages < 1:
            raise ValueError("max_consecutive_empty_pages must be >= 1")
        if self.captcha_wait_ceiling < 0:
            raise ValueError("captcha_wait_ceiling must be >= 0")
        if not self.strategy_priority_order:
            raise ValueError("strategy_priority_order must name at least one strategy")
        for name, (low, high) in (('page_delay', self.page_delay), ('settle_delay', self.settle_delay)):
            if low < 0 or high < low:
                raise ValueError(f"{name} must be a (min, max) range with 0 <= min <= max")
        self.strategy_priority_order = tuple(self.strategy_priority_order)

    @property
    def attempts_per_page(self) -> int:
        """Sessions tried on one page before the block budget is spent."""
        return max(1, self.max_proxy_retries_per_page)

    @classmethod
    def from_settings(cls, settings: Settings) -> 'CrawlConfig':
        return cls(
            target_result_count=settings.results_limit,
            max_proxy_retries_per_page=settings.max_proxy_retries_per_page,
            max_consecutive_empty_pages=settings.max_consecutive_empty_pages,
            captcha_wait_ceiling=settings.captcha_wait_ceiling,
            strategy_priority_order=tuple(settings.strategy_priority_order),
            require_proxy=settings.require_proxy,
            page_delay=(settings.page_delay_min, settings.page_delay_max),
            settle_delay=(settings.settle_delay_min, settings.settle_delay_max),
            simulate_interaction=settings.simulate_interaction,
        )
