from contextlib import asynccontextmanager
from dataclasses import asdict
from functools import lru_cache
import asyncio
import logging
import os

import httpx
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from code_trace.config import get_settings
from code_trace.document import combine_code
from code_trace.editor import auto_indent, progress, render_diff
from code_trace.history import HistoryStore, JsonFileStorage, format_relative_time
from code_trace.preview import render_preview

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STATIC_DIR = os.path.join(os.path.dirname(__file__), "static")

# StaticFiles refuses to mount a directory that does not exist yet
os.makedirs(settings.images_dir, exist_ok=True)


@lru_cache()
def get_history_store() -> HistoryStore:
    return HistoryStore(JsonFileStorage(settings.history_path), max_items=settings.max_history)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[startup] Images dir: %s", os.path.abspath(settings.images_dir))
    logger.info("[startup] History file: %s", os.path.abspath(settings.history_path))
    yield


app = FastAPI(title="Code Trace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(settings.images_url_prefix, StaticFiles(directory=settings.images_dir), name="analyzed-images")
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class AnalyzeRequest(BaseModel):
    url: str = ""
    mode: str = "fetch"  # "fetch", "screenshot", or "both"


class AnalyzeResponse(BaseModel):
    html: str
    css: str
    template_html: str
    success: bool
    images_downloaded: int
    session_id: str
    history_id: str | None = None


class DownloadImageRequest(BaseModel):
    image_url: str = ""
    session_id: str = ""


class ProgressRequest(BaseModel):
    user_html: str = ""
    user_css: str = ""


class CompareRequest(BaseModel):
    target: str
    typed: str = ""


class PreviewRequest(BaseModel):
    html: str = ""
    css: str = ""
    css_enabled: bool = True


def _history_entry(item) -> dict:
    return {**asdict(item), "age": format_relative_time(item.timestamp)}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return FileResponse(os.path.join(STATIC_DIR, "index.html"))


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/analyze", response_model=AnalyzeResponse)
async def analyze_endpoint(request: AnalyzeRequest,
                           history: HistoryStore = Depends(get_history_store)):
    """Rebuild the page at ``url`` as a retyping template and record it in history."""
    from code_trace.analyzer import MODES, AnalysisError, AnalysisTimeout, analyze_url

    url = request.url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required")
    if request.mode not in MODES:
        raise HTTPException(status_code=400, detail=f"mode must be one of {', '.join(MODES)}")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    try:
        result = await asyncio.wait_for(
            analyze_url(url, mode=request.mode),
            timeout=settings.analyze_timeout,
        )
    except (asyncio.TimeoutError, AnalysisTimeout) as e:
        logger.error("[analyze] Timed out: %s (%s)", url, e)
        raise HTTPException(status_code=504, detail="Analysis timed out. Try a simpler page.")
    except AnalysisError as e:
        logger.error("[analyze] Error analyzing URL %s: %s", url, e)
        raise HTTPException(status_code=500, detail=f"Failed to analyze URL: {e}")

    history_id = await asyncio.to_thread(
        history.add,
        url=url,
        template_html=result.template_html,
        template_css=result.css,
    )

    return AnalyzeResponse(
        html=result.html,
        css=result.css,
        template_html=result.template_html,
        success=True,
        images_downloaded=result.images_downloaded,
        session_id=result.session_id,
        history_id=history_id,
    )


@app.post("/api/download-image")
async def download_image_endpoint(request: DownloadImageRequest):
    """Fetch a single image into the public images directory."""
    from code_trace.image_fetcher import ImageDownloadError, download_image

    if not request.image_url:
        raise HTTPException(status_code=400, detail="image_url is required")

    try:
        local_url = await download_image(request.image_url, request.session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ImageDownloadError, httpx.HTTPError, httpx.InvalidURL, OSError) as e:
        logger.error("[images] Error downloading image %s: %s", request.image_url, e)
        raise HTTPException(status_code=500, detail=f"Failed to download image: {e}")

    return {
        "success": True,
        "original_url": request.image_url,
        "local_url": local_url,
    }


@app.get("/api/history")
async def list_history(history: HistoryStore = Depends(get_history_store)):
    return {"history": [_history_entry(item) for item in history.items]}


@app.get("/api/history/{item_id}")
async def get_history_item(item_id: str, history: HistoryStore = Depends(get_history_store)):
    item = history.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="History item not found")
    return _history_entry(item)


@app.put("/api/history/{item_id}/progress")
async def save_history_progress(item_id: str, request: ProgressRequest,
                                history: HistoryStore = Depends(get_history_store)):
    """Persist the user's typed HTML/CSS so a restore picks up where they left off."""
    item = await asyncio.to_thread(history.update_progress, item_id, request.user_html, request.user_css)
    if item is None:
        raise HTTPException(status_code=404, detail="History item not found")
    return _history_entry(item)


@app.delete("/api/history/{item_id}")
async def delete_history_item(item_id: str, history: HistoryStore = Depends(get_history_store)):
    if not await asyncio.to_thread(history.remove, item_id):
        raise HTTPException(status_code=404, detail="History item not found")
    return {"status": "deleted"}


@app.delete("/api/history")
async def clear_history(history: HistoryStore = Depends(get_history_store)):
    await asyncio.to_thread(history.clear)
    return {"status": "cleared"}


@app.post("/api/compare")
async def compare_endpoint(request: CompareRequest):
    """Per-character check of typed text against the template."""
    stats = progress(request.target, request.typed)
    return {
        **asdict(stats),
        "finished": stats.finished,
        "diff_html": render_diff(request.target, request.typed),
    }


@app.post("/api/auto-indent")
async def auto_indent_endpoint(request: CompareRequest):
    return {"indent": auto_indent(request.target, request.typed)}


@app.post("/api/preview")
async def preview_endpoint(request: PreviewRequest):
    document = combine_code(request.html, request.css)
    return {
        "document": document,
        "iframe": render_preview(document, css_enabled=request.css_enabled),
    }
