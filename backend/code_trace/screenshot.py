"""
Headless Chromium capture of the page being analyzed.

Only the first fold is captured: the model reconstructs the layout from the
HTML, the screenshot is a visual hint for colors and spacing.
"""

import logging

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from code_trace.config import get_settings

logger = logging.getLogger(__name__)


DISMISS_BANNERS_JS = '''() => {
    const btns = document.querySelectorAll(
        '[class*="cookie"] button, [id*="cookie"] button, ' +
        '[class*="consent"] button, [aria-label*="accept"], ' +
        '[aria-label*="Accept"], [class*="gdpr"] button'
    );
    for (const btn of btns) {
        if (btn.innerText.match(/accept|agree|got it|ok|close|dismiss/i)) {
            btn.click();
            break;
        }
    }
    document.querySelectorAll(
        '[class*="cookie"], [id*="cookie"], [class*="consent"], [class*="gdpr"]'
    ).forEach(el => {
        if (el.innerText.toLowerCase().match(/cookie|consent|privacy|gdpr/)) {
            el.remove();
        }
    });
}'''


async def capture_screenshot(url: str) -> bytes:
    """Load ``url`` and return a PNG of the viewport."""
    settings = get_settings()

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            context = await browser.new_context(
                viewport={"width": settings.viewport_width, "height": settings.viewport_height},
                user_agent=settings.user_agent,
            )
            page = await context.new_page()

            try:
                await page.goto(url, wait_until="networkidle", timeout=settings.page_load_timeout)
            except PlaywrightTimeoutError as e:
                logger.info("[screenshot] networkidle wait failed for %s (%s), retrying", url, e)
                await page.goto(url, wait_until="domcontentloaded",
                                timeout=settings.page_load_timeout // 2)
                await page.wait_for_timeout(2000)

            await page.evaluate(DISMISS_BANNERS_JS)
            await page.wait_for_timeout(500)

            png = await page.screenshot()
            logger.info("[screenshot] Captured %s (%d bytes)", url, len(png))
            return png
        finally:
            await browser.close()
