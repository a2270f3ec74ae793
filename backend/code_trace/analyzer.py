"""
Page analyzer: page HTML and/or screenshot -> Claude -> a self-contained
HTML/CSS template whose images are served locally.
"""

import logging
import re
import time
from dataclasses import dataclass

import anthropic
import httpx

from code_trace.config import get_settings
from code_trace.document import extract_style, strip_styles
from code_trace.image_extractor import extract_image_urls, localize_image_refs, rewrite_image_urls
from code_trace.image_fetcher import download_images
from code_trace.image_utils import screenshot_block
from code_trace.screenshot import capture_screenshot

logger = logging.getLogger(__name__)

MODES = ("fetch", "screenshot", "both")


class AnalysisError(RuntimeError):
    pass


class AnalysisTimeout(AnalysisError):
    pass


@dataclass
class AnalysisResult:
    html: str
    css: str
    template_html: str
    images_downloaded: int
    session_id: str


RECONSTRUCT_PROMPT = """You are a professional front-end engineer. Analyze the web page below and write learning-oriented HTML/CSS that **faithfully reproduces the original page visually**.

MOST IMPORTANT
- Reproduce the original structure, layout and design **as it is**
- Do not invent sections or content that the page does not have
- Simple pages stay simple, complex pages stay complex
- Copy the look and feel of the original completely

REQUIREMENTS
1. Write a complete HTML5 document:
   <!DOCTYPE html>
   <html lang="...">
   <head>
     <meta charset="UTF-8">
     <meta name="viewport" content="width=device-width, initial-scale=1.0">
     <title>original title</title>
     <style>...</style>
   </head>
   <body>the original content</body>
   </html>

2. Put **all** CSS inside a single <style> tag (no external stylesheets)

3. Include only elements that exist on the original page:
   - header, navigation and footer only if the original has them

4. Reproduce the styling faithfully:
   - layout (same placement as the original)
   - colors (background, text, borders)
   - typography (font-family, size, weight, line-height)
   - spacing (margin, padding)
   - decoration (border-radius, box-shadow, border)

5. Use <img> tags with the original absolute URL in src:
   e.g. <img src="https://..." alt="...">

6. Use the original text content verbatim

7. Add short comments where they help a learner

8. Return only the HTML/CSS code (no explanations, no markdown fences)

9. If the original page is simple, generate simple code
"""


def _get_client():
    """Get an async Anthropic client."""
    settings = get_settings()
    return anthropic.AsyncAnthropic(
        api_key=settings.anthropic_api_key or None,
        timeout=settings.llm_timeout,
    )


def build_prompt(html: str | None) -> str:
    """Reconstruction instructions, with the page HTML truncated to the configured limit."""
    if html is None:
        return RECONSTRUCT_PROMPT + "\nThe page is provided as the attached screenshot."
    limit = get_settings().html_char_limit
    return f"{RECONSTRUCT_PROMPT}\nHTML to analyze:\n{html[:limit]}"


def strip_code_fences(text: str) -> str:
    """Remove the markdown code fences Claude sometimes wraps around the document."""
    text = re.sub(r"^```html\s*", "", text, count=1, flags=re.IGNORECASE)
    text = re.sub(r"^```\s*", "", text, count=1, flags=re.MULTILINE)
    text = re.sub(r"```\s*$", "", text, count=1, flags=re.MULTILINE)
    return text.strip()


async def fetch_page_html(client: httpx.AsyncClient, url: str) -> str:
    settings = get_settings()
    try:
        resp = await client.get(url, headers={"User-Agent": settings.user_agent})
    except httpx.HTTPError as e:
        raise AnalysisError(f"Failed to load {url}: {e}") from e
    if resp.status_code >= 400:
        raise AnalysisError(f"Failed to load {url}: HTTP {resp.status_code}")
    return resp.text


async def _generate(client, content: list) -> str:
    settings = get_settings()
    try:
        response = await client.messages.create(
            model=settings.default_model,
            max_tokens=settings.max_tokens,
            messages=[{"role": "user", "content": content}],
        )
    except anthropic.APITimeoutError as e:
        raise AnalysisTimeout(f"Claude request timed out: {e}") from e
    except anthropic.APIError as e:
        raise AnalysisError(f"Claude request failed: {e}") from e

    if getattr(response, "stop_reason", None) == "max_tokens":
        logger.warning("[analyze] Output hit max_tokens, template may be truncated")

    if not response.content:
        return ""
    block = response.content[0]
    return block.text if block.type == "text" else ""


async def analyze_url(url: str, mode: str = "fetch", llm_client=None,
                      http_client: httpx.AsyncClient | None = None) -> AnalysisResult:
    """
    Build a retyping template for ``url``.

    ``mode`` picks what Claude sees: the fetched HTML ("fetch"), a viewport
    screenshot ("screenshot") or both. Images in the result are downloaded
    and their URLs point at the local copies.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown analysis mode: {mode!r}")

    settings = get_settings()
    session_id = str(int(time.time() * 1000))

    owns_http = http_client is None
    if owns_http:
        http_client = httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=True)

    try:
        content = []
        page_html = None
        if mode in ("fetch", "both"):
            page_html = await fetch_page_html(http_client, url)
            logger.info("[analyze] Fetched %s (%d chars)", url, len(page_html))

        if mode in ("screenshot", "both"):
            try:
                png = await capture_screenshot(url)
            except Exception as e:
                raise AnalysisError(f"Screenshot of {url} failed: {e}") from e
            content.append(screenshot_block(png))

        content.append({"type": "text", "text": build_prompt(page_html)})

        generated = await _generate(llm_client or _get_client(), content)
        generated = strip_code_fences(generated)

        image_urls = extract_image_urls(generated, url)
        logger.info("[analyze] Found %d images to download", len(image_urls))

        mapping = await download_images(image_urls, session_id, client=http_client)
        generated = localize_image_refs(generated, url, mapping)
        # absolute URLs outside src/url(), e.g. in srcset
        generated = rewrite_image_urls(generated, mapping)
        logger.info("[analyze] Successfully downloaded and replaced %d images", len(mapping))
    finally:
        if owns_http:
            await http_client.aclose()

    return AnalysisResult(
        html=generated,
        css=extract_style(generated),
        template_html=strip_styles(generated),
        images_downloaded=len(mapping),
        session_id=session_id,
    )
