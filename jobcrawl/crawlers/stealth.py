"""
Stealth browser session layer for sites with bot detection.

Uses Playwright with enhanced stealth features to get past bot detection.
This includes realistic browser fingerprints, proper headers, per-session
proxies and replay of human-like interaction plans.
"""

import asyncio
import logging
import os
from typing import List, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..base import InteractionKind, InteractionStep, PageOutcome, SessionContext
from .base import SessionProvider, outcome_for_response

logger = logging.getLogger(__name__)

# Hides the usual automation indicators
STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    // Override plugins
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });

    // Override languages
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });

    // Override permissions
    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications' ?
            Promise.resolve({ state: Notification.permission }) :
            originalQuery(parameters)
    );
"""

LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-features=IsolateOrigins,site-per-process',
    '--disable-background-timer-throttling',
    '--disable-backgrounding-occluded-windows',
    '--disable-renderer-backgrounding',
    '--disable-gpu',  # Disable GPU to reduce crashes
]


class StealthBrowser(SessionProvider):
    """
    Playwright-backed sessions: one shared Chromium, one context per session.

    Each context carries its own proxy, user agent and headers, so sessions
    of different orchestrators never share cookies or egress.

    Args:
        headless: Run browser in headless mode (CAPTCHA hand-solving needs False)
        timeout: Navigation timeout in seconds
        viewport: Browser viewport size
    """

    name = "browser"

    def __init__(
        self,
        headless: bool = True,
        timeout: float = 30.0,
        viewport: Optional[dict] = None,
        locale: str = 'en-US',
        timezone_id: str = 'Asia/Kolkata',
    ):
        self.headless = headless
        self.timeout = timeout
        self.viewport = viewport or {'width': 1920, 'height': 1080}
        self.locale = locale
        self.timezone_id = timezone_id
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        """Launch Chromium if it is not running yet."""
        async with self._init_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            await self._cleanup()
            self._playwright = await async_playwright().start()

            # Verify Chromium is installed
            chromium_path = self._playwright.chromium.executable_path
            if not chromium_path or not os.path.exists(chromium_path):
                await self._cleanup()
                raise RuntimeError("Chromium browser not found. Run: playwright install chromium")

            logger.debug("Launching Chromium browser...")
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
                handle_sigint=False,
                handle_sigterm=False,
                handle_sighup=False,
            )
            return self._browser

    async def _open(self, ctx: SessionContext) -> None:
        browser = await self._ensure_browser()
        context: BrowserContext = await browser.new_context(
            viewport=self.viewport,
            user_agent=ctx.identity.user_agent,
            locale=self.locale,
            timezone_id=self.timezone_id,
            ignore_https_errors=True,
            extra_http_headers=dict(ctx.identity.headers),
            proxy=ctx.proxy.to_playwright() if ctx.proxy else None,
        )
        try:
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await asyncio.wait_for(context.new_page(), timeout=10.0)
        except BaseException:
            await context.close()
            raise
        ctx.handle = page

    async def _read_page(self, page: Page, url: str, status_code: Optional[int]) -> PageOutcome:
        payload = await page.content()
        title = await page.title()
        try:
            text = await page.inner_text('body', timeout=5000)
        except Exception:
            text = None  # Falls back to text derived from the payload
        return outcome_for_response(page.url or url, status_code, payload, title=title, text=text)

    async def _load(self, ctx: SessionContext, url: str) -> PageOutcome:
        page: Page = ctx.handle
        response = await page.goto(
            url,
            wait_until='domcontentloaded',
            timeout=int(self.timeout * 1000)
        )
        return await self._read_page(page, url, response.status if response else None)

    async def await_resolution(self, ctx: SessionContext, timeout: float) -> PageOutcome:
        """Wait for the page to navigate away from the challenge (solved by hand)."""
        page: Page = ctx.handle
        logger.info(f"CAPTCHA detected! Waiting up to {timeout:.0f}s for manual intervention...")
        try:
            await page.wait_for_event('framenavigated', timeout=int(timeout * 1000))
            await page.wait_for_load_state('domcontentloaded', timeout=int(self.timeout * 1000))
        except PlaywrightTimeoutError:
            logger.debug("No navigation while waiting for CAPTCHA resolution")
        outcome = await self._read_page(page, ctx.current_url, None)
        ctx.last_outcome = outcome
        return outcome

    async def interact(self, ctx: SessionContext, plan: List[InteractionStep]) -> None:
        page: Page = ctx.handle
        for step in plan:
            try:
                if step.kind is InteractionKind.SCROLL:
                    await page.evaluate(
                        "y => window.scrollTo({top: y, behavior: 'smooth'})", step.params['y'],
                    )
                elif step.kind is InteractionKind.MOVE:
                    await page.mouse.move(step.params['x'], step.params['y'],
                                          steps=step.params.get('steps', 10))
            except PlaywrightTimeoutError:
                logger.debug(f"Interaction step {step.kind.value} timed out")
            except PlaywrightError as e:
                logger.debug(f"Interaction step {step.kind.value} failed: {e}")
            await asyncio.sleep(step.params.get('pause', 0))

    async def _release(self, ctx: SessionContext) -> None:
        page: Optional[Page] = ctx.handle
        if page is None:
            return
        cleanup_timeout = 2.0
        try:
            await asyncio.wait_for(page.context.close(), timeout=cleanup_timeout)
        except asyncio.TimeoutError:
            logger.warning("Context close timed out, forcing cleanup")

    async def _cleanup(self):
        """Close the browser and stop Playwright, with timeouts to prevent hanging."""
        cleanup_timeout = 2.0

        if self._browser:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Browser close timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Playwright stop timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def shutdown(self) -> None:
        await self._cleanup()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._cleanup()
