"""
Image reference discovery and rewriting for generated HTML/CSS.

Both helpers are plain text transforms: no DOM parsing, the model output is
frequently not well-formed enough for a real parser to be worth it.
"""

import re
from urllib.parse import urljoin, urlparse

IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
CSS_URL_RE = re.compile(r"""url\(['"]?([^'")\s]+)['"]?\)""", re.IGNORECASE)


def _absolutize(ref: str, base_url: str) -> str | None:
    ref = ref.strip()
    if not ref or ref.lower().startswith("data:"):
        return None
    try:
        if ref.startswith(("http://", "https://")):
            resolved = ref
        elif ref.startswith("//"):
            resolved = "https:" + ref
        else:
            resolved = urljoin(base_url, ref)
        # urlparse rejects things like an unclosed "[" host
        parsed = urlparse(resolved)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return resolved


def extract_image_urls(html: str, base_url: str) -> list[str]:
    """
    Return absolute URLs for every <img src> and CSS url() in ``html``.

    <img> matches come first, then url() matches, each in document order.
    Relative references resolve against ``base_url``; data: URIs and
    anything that does not resolve to http(s) are skipped. Duplicates keep
    their first position.
    """
    refs = [m.group(1) for m in IMG_SRC_RE.finditer(html)]
    refs += [m.group(1) for m in CSS_URL_RE.finditer(html)]

    urls: list[str] = []
    seen = set()
    for ref in refs:
        url = _absolutize(ref, base_url)
        if url is None or url in seen:
            continue
        seen.add(url)
        urls.append(url)
    return urls


def localize_image_refs(html: str, base_url: str, mapping: dict[str, str]) -> str:
    """
    Point <img src> and url() references at their local copies, including
    relative references whose resolved URL is in ``mapping``.
    """
    def _swap(match: re.Match) -> str:
        local = mapping.get(_absolutize(match.group(1), base_url) or "")
        if local is None:
            return match.group(0)
        start, end = match.span(1)
        offset = match.start(0)
        text = match.group(0)
        return text[: start - offset] + local + text[end - offset:]

    html = IMG_SRC_RE.sub(_swap, html)
    return CSS_URL_RE.sub(_swap, html)


def rewrite_image_urls(html: str, mapping: dict[str, str]) -> str:
    """Replace each original URL in ``html`` with its local path."""
    # Longest first: "a.png?x=1" must not be clobbered by a rewrite of "a.png"
    for original in sorted(mapping, key=len, reverse=True):
        html = html.replace(original, mapping[original])
    return html
