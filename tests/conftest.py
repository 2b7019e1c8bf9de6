"""
Pytest configuration and fixtures for jobcrawl tests.
"""

import random

import pytest

from jobcrawl.base import Identity, SearchQuery
from jobcrawl.config import CrawlConfig, get_site_config
from jobcrawl.pacing import PacingPolicy


@pytest.fixture
def site():
    return get_site_config('naukri')


@pytest.fixture
def query():
    return SearchQuery(keyword='Node.js', experience_range='2-5')


@pytest.fixture
def fast_config():
    """Factory for configs without pacing waits."""
    def build(**overrides):
        values = dict(
            target_result_count=5,
            max_proxy_retries_per_page=3,
            max_consecutive_empty_pages=2,
            captcha_wait_ceiling=0,
            page_delay=(0, 0),
            settle_delay=(0, 0),
            simulate_interaction=False,
        )
        values.update(overrides)
        return CrawlConfig(**values)
    return build


@pytest.fixture
def pacing():
    return PacingPolicy(rng=random.Random(42))


@pytest.fixture
def identity():
    return Identity(user_agent='Mozilla/5.0 (X11; Linux x86_64) TestAgent/1.0', headers={'Accept-Language': 'en-US'})
