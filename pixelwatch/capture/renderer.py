"""Renderer: captures element screenshots with Playwright."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pixelwatch.errors import CaptureError, CaptureErrorKind
from pixelwatch.models.config import BrowserConfig, ViewportConfig
from pixelwatch.models.snapshot import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


class Renderer:
    """Produces a Snapshot for a (url, viewport, selector) triple.

    Used as an async context manager around a batch of captures so that
    implementations can share expensive resources (a browser) across them.
    """

    async def __aenter__(self) -> "Renderer":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def capture(
        self, url: str, viewport: ViewportConfig, selector: str, timeout_ms: int
    ) -> Snapshot:
        raise NotImplementedError


class PlaywrightRenderer(Renderer):
    """Chromium-backed renderer; one browser per batch, one context per capture."""

    def __init__(self, browser_config: BrowserConfig | None = None, settle_delay_ms: int = 1000):
        self.browser_config = browser_config or BrowserConfig()
        self.settle_delay_ms = settle_delay_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._depth = 0
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "PlaywrightRenderer":
        # Re-entrant: a manual acceptance may overlap a scheduled check
        async with self._lock:
            self._depth += 1
            if self._browser is None:
                logger.debug("Launching Chromium (headless=%s)...", self.browser_config.headless)
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.browser_config.headless,
                    slow_mo=self.browser_config.slow_mo,
                    args=["--disable-blink-features=AutomationControlled"],
                )
        return self

    async def __aexit__(self, *exc) -> None:
        async with self._lock:
            self._depth -= 1
            if self._depth > 0:
                return
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def capture(
        self, url: str, viewport: ViewportConfig, selector: str, timeout_ms: int
    ) -> Snapshot:
        if self._browser is None:
            raise CaptureError(CaptureErrorKind.TRANSPORT_ERROR, "Renderer used outside of a capture session")

        context = await self._browser.new_context(
            viewport={"width": viewport.width, "height": viewport.height},
            user_agent=self.browser_config.user_agent or DEFAULT_USER_AGENT,
        )
        try:
            page = await context.new_page()
            try:
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                raise CaptureError(CaptureErrorKind.NAVIGATION_TIMEOUT, f"{url}: {e}") from e

            # Let fonts and animations settle
            await page.wait_for_timeout(self.settle_delay_ms)

            element = await page.query_selector(selector)
            if element is None:
                raise CaptureError(
                    CaptureErrorKind.ELEMENT_NOT_FOUND,
                    f"'{selector}' on {url} ({viewport.name})",
                )

            image = await element.screenshot(timeout=timeout_ms)
            return Snapshot(
                url=url,
                viewport=viewport,
                selector=selector,
                image=image,
                metadata={
                    "title": await page.title(),
                    "dimensions": await element.bounding_box(),
                },
            )
        except PlaywrightTimeoutError as e:
            raise CaptureError(
                CaptureErrorKind.TRANSPORT_ERROR, f"screenshot of '{selector}' on {url} timed out: {e}"
            ) from e
        except PlaywrightError as e:
            raise CaptureError(CaptureErrorKind.TRANSPORT_ERROR, f"{url}: {e}") from e
        finally:
            await context.close()
