"""
Session capability used by the orchestrator.

A SessionProvider opens a SessionContext bound to one proxy and identity,
loads pages into it, and releases it. Implementations only provide the
transport; navigation errors come back as TRANSPORT_ERROR outcomes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..base import (
    Identity,
    InteractionStep,
    PageOutcome,
    PageStatus,
    ProxyEndpoint,
    SessionContext,
    SessionError,
)

logger = logging.getLogger(__name__)

# HTTP statuses that mean the target refused us
DENIAL_STATUSES = {401, 403, 429}


def outcome_for_response(url: str, status_code: Optional[int], payload: str,
                         title: str = "", text: Optional[str] = None) -> PageOutcome:
    """
    Build a PageOutcome from an HTTP-level response.

    Denial statuses are BLOCKED. Server errors with no real page behind
    them are TRANSPORT_ERROR; some sites return 500 but still have valid
    content, so those are left to the block detector.
    """
    if status_code in DENIAL_STATUSES:
        status = PageStatus.BLOCKED
    elif status_code is not None and status_code >= 500 and not (
            len(payload) > 1000 and '<html' in payload.lower()):
        status = PageStatus.TRANSPORT_ERROR
    else:
        status = PageStatus.OK
    return PageOutcome(
        status=status,
        url=url,
        payload=payload,
        text=text,
        title=title,
        http_status=status_code,
        error=f"HTTP {status_code}" if status is not PageStatus.OK else None,
    )


class SessionProvider(ABC):
    """
    Abstract session layer.

    Subclasses must implement:
    - _open(): create the underlying page/client for a context
    - _load(): fetch a URL in an open context
    - _release(): free the underlying page/client

    Optional overrides:
    - await_resolution(): wait for a CAPTCHA to be solved externally
    - interact(): replay an interaction plan
    - shutdown(): free resources shared between sessions
    """

    name = "session"

    async def open(self, proxy: Optional[ProxyEndpoint], identity: Identity) -> SessionContext:
        """
        Open a session bound to a proxy and identity.

        Raises:
            SessionError: If the session cannot be created
        """
        ctx = SessionContext(proxy=proxy, identity=identity)
        try:
            await self._open(ctx)
        except SessionError:
            raise
        except Exception as e:
            raise SessionError(f"Failed to open {self.name} session via {proxy or 'direct'}: {e}") from e
        logger.debug(f"Opened {self.name} session {ctx.session_id} via {proxy or 'direct connection'}")
        return ctx

    async def navigate(self, ctx: SessionContext, url: str) -> PageOutcome:
        """Load a URL. Never raises for transport problems."""
        if ctx.closed:
            raise SessionError(f"Session {ctx.session_id} is closed")
        ctx.current_url = url
        try:
            outcome = await self._load(ctx, url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Navigation to {url} failed in session {ctx.session_id}: {e}")
            outcome = PageOutcome(status=PageStatus.TRANSPORT_ERROR, url=url, error=str(e))
        ctx.last_outcome = outcome
        return outcome

    async def close(self, ctx: SessionContext) -> None:
        """Release a session. Safe to call repeatedly and after errors."""
        if ctx.closed:
            return
        ctx.closed = True
        try:
            await self._release(ctx)
        except Exception as e:
            logger.debug(f"Error releasing session {ctx.session_id}: {e}")
        ctx.handle = None

    async def await_resolution(self, ctx: SessionContext, timeout: float) -> PageOutcome:
        """
        Give an operator up to `timeout` seconds to clear a challenge, then
        reload the current page.
        """
        await asyncio.sleep(timeout)
        return await self.navigate(ctx, ctx.current_url)

    async def interact(self, ctx: SessionContext, plan: List[InteractionStep]) -> None:
        """Replay an interaction plan. The default session has nothing to replay on."""
        return None

    async def shutdown(self) -> None:
        return None

    @abstractmethod
    async def _open(self, ctx: SessionContext) -> None:
        pass

    @abstractmethod
    async def _load(self, ctx: SessionContext, url: str) -> PageOutcome:
        pass

    @abstractmethod
    async def _release(self, ctx: SessionContext) -> None:
        pass
