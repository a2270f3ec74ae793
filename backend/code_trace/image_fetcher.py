"""
Downloads images referenced by a generated template and stores them under
the public images directory, so the preview does not hotlink the source site.
"""

import asyncio
import hashlib
import logging
import os
import re
import time

import httpx

from code_trace.config import get_settings

logger = logging.getLogger(__name__)

VALID_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "svg", "webp")
SESSION_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


class ImageDownloadError(RuntimeError):
    pass


def image_filename(image_url: str, session_id: str, digest_len: int | None = 12,
                   strict_ext: bool = True) -> str:
    """
    Content-addressed file name for ``image_url``:
    ``{session_id}_{md5(url)[:digest_len]}.{ext}``.

    ``ext`` is whatever follows the last dot, minus the query string. In strict
    mode anything outside VALID_EXTENSIONS is stored as jpg.
    """
    if not SESSION_ID_RE.fullmatch(session_id):
        raise ValueError(f"Invalid session id: {session_id!r}")

    digest = hashlib.md5(image_url.encode("utf-8")).hexdigest()
    if digest_len:
        digest = digest[:digest_len]

    ext = image_url.rsplit(".", 1)[-1].split("?", 1)[0]
    if strict_ext:
        ext = ext.lower()
        if ext not in VALID_EXTENSIONS:
            ext = "jpg"
    elif not ext.isalnum():
        # raw extensions must still be a single path component
        ext = "jpg"
    return f"{session_id}_{digest}.{ext}"


def _write_file(directory: str, filename: str, data: bytes) -> None:
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, filename), "wb") as f:
        f.write(data)


def _public_url(filename: str) -> str:
    prefix = get_settings().images_url_prefix.rstrip("/")
    return f"{prefix}/{filename}"


async def download_and_save_image(client: httpx.AsyncClient, image_url: str,
                                  session_id: str) -> str | None:
    """Fetch one image and persist it. Returns the public path, or None on any failure."""
    settings = get_settings()
    try:
        resp = await client.get(image_url, headers={"User-Agent": settings.user_agent})
        if resp.status_code < 200 or resp.status_code >= 300:
            logger.warning("[images] %s -> HTTP %s", image_url, resp.status_code)
            return None

        filename = image_filename(image_url, session_id)
        await asyncio.to_thread(_write_file, settings.images_dir, filename, resp.content)
        return _public_url(filename)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
        logger.error("[images] Failed to download image: %s (%s)", image_url, e)
        return None


async def download_images(urls: list[str], session_id: str, limit: int | None = None,
                          client: httpx.AsyncClient | None = None) -> dict[str, str]:
    """
    Download up to ``limit`` images in one parallel batch.
    Returns {original_url: local_url} for the downloads that succeeded.
    """
    settings = get_settings()
    if limit is None:
        limit = settings.max_images
    batch = urls[:limit]
    if not batch:
        return {}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=True)
    try:
        results = await asyncio.gather(
            *(download_and_save_image(client, url, session_id) for url in batch)
        )
    finally:
        if owns_client:
            await client.aclose()

    mapping = {}
    for url, local in zip(batch, results):
        if local:
            mapping[url] = local
            logger.info("[images] Downloaded: %s -> %s", url, local)
    return mapping


async def download_image(image_url: str, session_id: str = "",
                         client: httpx.AsyncClient | None = None) -> str:
    """
    Single-image download used by the standalone endpoint.
    Keeps the full digest and the raw extension; raises on a bad status.
    A missing session id gets a fresh millisecond stamp.
    """
    settings = get_settings()
    if not session_id:
        session_id = str(int(time.time() * 1000))
    # name first: a rejected session id must not cost a download
    filename = image_filename(image_url, session_id, digest_len=None, strict_ext=False)

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=True)
    try:
        resp = await client.get(image_url)
    finally:
        if owns_client:
            await client.aclose()

    if resp.status_code < 200 or resp.status_code >= 300:
        raise ImageDownloadError(f"Failed to fetch image: {resp.reason_phrase or resp.status_code}")

    await asyncio.to_thread(_write_file, settings.images_dir, filename, resp.content)
    return _public_url(filename)
