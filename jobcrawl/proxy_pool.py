"""
Proxy pool with rotation and failure tracking.

One pool may be shared by several orchestrators. Every state transition
happens under a single lock that is never held across an await.
"""

import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .base import NoProxyAvailable, ProxyEndpoint, ProxyState, utcnow

logger = logging.getLogger(__name__)


class ProxyPool:
    """
    Ordered proxy endpoints with a circular rotation cursor.

    Usage:
        pool = ProxyPool.from_strings(['http://10.0.0.1:8080', '10.0.0.2:3128'])
        proxy = pool.next()
        ...
        pool.report_failure(proxy)   # blocked / unreachable
        pool.report_success(proxy)   # page loaded fine
    """

    def __init__(self, endpoints: Optional[Iterable[ProxyEndpoint]] = None):
        self._endpoints: List[ProxyEndpoint] = []
        self._cursor = 0
        self._lock = threading.Lock()
        self.reset_count = 0
        for endpoint in endpoints or []:
            self.add(endpoint)

    @classmethod
    def from_strings(cls, proxies: Iterable[str],
                     credentials: Optional[Tuple[str, str]] = None) -> 'ProxyPool':
        """
        Build a pool from proxy strings.

        Args:
            proxies: Proxy strings ('host:port' or 'scheme://[user:pass@]host:port')
            credentials: Default (username, password) for proxies without their own
        """
        pool = cls()
        pool.add_many(proxies, credentials=credentials)
        return pool

    def __len__(self):
        return len(self._endpoints)

    @property
    def endpoints(self) -> Tuple[ProxyEndpoint, ...]:
        return tuple(self._endpoints)

    def add(self, proxy: Union[str, ProxyEndpoint],
            credentials: Optional[Tuple[str, str]] = None) -> Optional[ProxyEndpoint]:
        """Add a proxy unless an endpoint with the same server is present."""
        endpoint = ProxyEndpoint.parse(proxy) if isinstance(proxy, str) else proxy
        if endpoint.credentials is None and credentials:
            endpoint.credentials = tuple(credentials)
        with self._lock:
            if any(e.server == endpoint.server for e in self._endpoints):
                return None
            self._endpoints.append(endpoint)
        return endpoint

    def add_many(self, proxies: Iterable[Union[str, ProxyEndpoint]],
                 credentials: Optional[Tuple[str, str]] = None) -> int:
        added = 0
        for proxy in proxies:
            if self.add(proxy, credentials=credentials) is not None:
                added += 1
        return added

    def load_from_file(self, file_path: Union[str, Path],
                       credentials: Optional[Tuple[str, str]] = None) -> int:
        """
        Load proxies from a file, one per line. Blank lines and lines
        starting with '#' are ignored.

        Returns:
            Number of proxies added
        """
        lines = Path(file_path).read_text(encoding='utf-8').splitlines()
        proxies = [line.strip() for line in lines if line.strip() and not line.strip().startswith('#')]
        added = self.add_many(proxies, credentials=credentials)
        logger.info(f"Loaded {added} proxies from {file_path}")
        return added

    def next(self) -> ProxyEndpoint:
        """
        Hand out the next usable endpoint.

        Failed endpoints are skipped. When every endpoint has failed, all of
        them are reset to UNKNOWN once and the endpoint at the cursor is
        returned.

        Raises:
            NoProxyAvailable: If the pool is empty
        """
        with self._lock:
            total = len(self._endpoints)
            if total == 0:
                raise NoProxyAvailable("Proxy pool is empty")

            for _ in range(total):
                endpoint = self._take_at_cursor()
                if endpoint.state is not ProxyState.FAILED:
                    return endpoint

            for endpoint in self._endpoints:
                endpoint.state = ProxyState.UNKNOWN
            self.reset_count += 1
            logger.warning(f"All {total} proxies have failed. Resetting failed proxies list.")
            return self._take_at_cursor()

    def _take_at_cursor(self) -> ProxyEndpoint:
        endpoint = self._endpoints[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._endpoints)
        endpoint.last_used_at = utcnow()
        return endpoint

    def report_success(self, endpoint: Optional[ProxyEndpoint]) -> None:
        if endpoint is None:
            return
        with self._lock:
            if endpoint in self._endpoints:
                endpoint.state = ProxyState.HEALTHY

    def report_failure(self, endpoint: Optional[ProxyEndpoint]) -> bool:
        """
        Mark an endpoint as failed.

        Returns:
            True if the endpoint transitioned to FAILED, False if it already was
            (or does not belong to this pool)
        """
        if endpoint is None:
            return False
        with self._lock:
            if endpoint not in self._endpoints or endpoint.state is ProxyState.FAILED:
                return False
            endpoint.state = ProxyState.FAILED
        logger.info(f"Marked proxy as failed: {endpoint}")
        return True

    @property
    def available_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._endpoints if e.state is not ProxyState.FAILED)

    @property
    def total_count(self) -> int:
        return len(self._endpoints)
