"""
Plain HTTP session layer using httpx.

Used for the raw-HTML route and whenever a browser is not needed. It is
faster and more resource-efficient than the Playwright-based session.
"""

import logging
from typing import Optional

import httpx

from ..base import PageOutcome, SessionContext
from ..utils.extractors import html_title
from .base import SessionProvider, outcome_for_response

logger = logging.getLogger(__name__)


class StaticFetcher(SessionProvider):
    """
    One httpx.AsyncClient per session, routed through the session's proxy.

    Args:
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    name = "http"

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def _open(self, ctx: SessionContext) -> None:
        ctx.handle = httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers=ctx.identity.http_headers(),
            proxy=ctx.proxy.url if ctx.proxy else None,
            transport=self.transport,
            limits=httpx.Limits(
                max_keepalive_connections=5,
                max_connections=10,
                keepalive_expiry=30.0
            )
        )

    async def _load(self, ctx: SessionContext, url: str) -> PageOutcome:
        logger.debug(f"StaticFetcher fetching: {url}")
        client: httpx.AsyncClient = ctx.handle
        response = await client.get(url)
        payload = response.text
        return outcome_for_response(str(response.url), response.status_code, payload,
                                    title=html_title(payload))

    async def _release(self, ctx: SessionContext) -> None:
        client: Optional[httpx.AsyncClient] = ctx.handle
        if client is not None and not client.is_closed:
            await client.aclose()
