import asyncio
import os

import httpx
import pytest
from fastapi.testclient import TestClient

import code_trace.analyzer as analyzer
import code_trace.image_fetcher as image_fetcher
from code_trace.analyzer import AnalysisError, AnalysisResult, AnalysisTimeout
from code_trace.history import HistoryStore, MemoryStorage
from code_trace.main import app, get_history_store
from code_trace import main


@pytest.fixture
def history():
    return HistoryStore(MemoryStorage())


@pytest.fixture
def client(history):
    app.dependency_overrides[get_history_store] = lambda: history
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def fake_analyze(monkeypatch):
    calls = []

    async def fake(url, mode="fetch"):
        calls.append((url, mode))
        return AnalysisResult(
            html="<html><head><style>p{}</style></head><body><p>x</p></body></html>",
            css="p{}",
            template_html="<html><head></head><body><p>x</p></body></html>",
            images_downloaded=3,
            session_id="1700000000000",
        )

    monkeypatch.setattr(analyzer, "analyze_url", fake)
    return calls


def test_index_page(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Code Trace" in resp.text


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestAnalyze:
    def test_success_records_history(self, client, fake_analyze, history):
        resp = client.post("/api/analyze", json={"url": "example.com"})
        assert resp.status_code == 200
        data = resp.json()

        assert fake_analyze == [("https://example.com", "fetch")]
        assert data["success"] is True
        assert data["images_downloaded"] == 3
        assert data["css"] == "p{}"

        item = history.get(data["history_id"])
        assert item.url == "https://example.com"
        assert item.template_css == "p{}"
        assert "<style>" not in item.template_html

    def test_mode_is_forwarded(self, client, fake_analyze):
        client.post("/api/analyze", json={"url": "https://example.com", "mode": "both"})
        assert fake_analyze == [("https://example.com", "both")]

    def test_missing_url(self, client, fake_analyze):
        resp = client.post("/api/analyze", json={"url": "  "})
        assert resp.status_code == 400
        assert fake_analyze == []

    def test_analysis_error(self, client, monkeypatch, history):
        async def failing(url, mode="fetch"):
            raise AnalysisError("Claude request failed: overloaded")

        monkeypatch.setattr(analyzer, "analyze_url", failing)
        resp = client.post("/api/analyze", json={"url": "https://example.com"})
        assert resp.status_code == 500
        assert "overloaded" in resp.json()["detail"]
        assert history.items == []

    def test_bad_mode(self, client, fake_analyze):
        resp = client.post("/api/analyze", json={"url": "https://example.com", "mode": "x"})
        assert resp.status_code == 400
        assert "fetch" in resp.json()["detail"]
        assert fake_analyze == []

    def test_value_error_inside_analysis_is_not_a_bad_request(self, client, monkeypatch):
        async def broken(url, mode="fetch"):
            raise ValueError("Invalid IPv6 URL")

        monkeypatch.setattr(analyzer, "analyze_url", broken)
        with pytest.raises(ValueError):
            client.post("/api/analyze", json={"url": "https://example.com"})

    def test_claude_timeout(self, client, monkeypatch, history):
        async def timing_out(url, mode="fetch"):
            raise AnalysisTimeout("Claude request timed out: Request timed out.")

        monkeypatch.setattr(analyzer, "analyze_url", timing_out)
        resp = client.post("/api/analyze", json={"url": "https://example.com"})
        assert resp.status_code == 504
        assert history.items == []

    def test_timeout(self, client, monkeypatch):
        async def slow(url, mode="fetch"):
            await asyncio.sleep(5)

        monkeypatch.setattr(analyzer, "analyze_url", slow)
        monkeypatch.setattr(main.settings, "analyze_timeout", 0.05)
        resp = client.post("/api/analyze", json={"url": "https://example.com"})
        assert resp.status_code == 504


class TestDownloadImage:
    def test_success(self, client, monkeypatch):
        async def fake(image_url, session_id):
            return f"/analyzed-images/{session_id}_abc.png"

        monkeypatch.setattr(image_fetcher, "download_image", fake)
        resp = client.post("/api/download-image", json={"image_url": "https://x.test/a.png", "session_id": "9"})
        assert resp.json() == {
            "success": True,
            "original_url": "https://x.test/a.png",
            "local_url": "/analyzed-images/9_abc.png",
        }

    def test_missing_url(self, client):
        assert client.post("/api/download-image", json={"session_id": "9"}).status_code == 400

    def test_upstream_failure(self, client, monkeypatch):
        async def failing(image_url, session_id):
            raise image_fetcher.ImageDownloadError("Failed to fetch image: Not Found")

        monkeypatch.setattr(image_fetcher, "download_image", failing)
        resp = client.post("/api/download-image", json={"image_url": "https://x.test/a.png", "session_id": "9"})
        assert resp.status_code == 500
        assert "Not Found" in resp.json()["detail"]

    def test_missing_session_id_still_saves(self, client, monkeypatch, settings):
        real_download = image_fetcher.download_image

        async def offline(image_url, session_id):
            transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"PNG"))
            async with httpx.AsyncClient(transport=transport) as http:
                return await real_download(image_url, session_id, client=http)

        monkeypatch.setattr(image_fetcher, "download_image", offline)
        resp = client.post("/api/download-image", json={"image_url": "https://x.test/a.png"})
        assert resp.status_code == 200
        local = resp.json()["local_url"]
        assert local.startswith("/analyzed-images/")
        assert os.path.exists(os.path.join(settings.images_dir, local.rsplit("/", 1)[1]))

    def test_bad_session_id(self, client):
        resp = client.post("/api/download-image", json={"image_url": "https://x.test/a.png", "session_id": "../x"})
        assert resp.status_code == 400


class LoopCheckingStorage(MemoryStorage):
    """Records, for every write, whether it ran on the event loop thread."""

    def __init__(self):
        super().__init__()
        self.on_loop = []

    def _record(self):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.on_loop.append(False)
        else:
            self.on_loop.append(True)

    def set(self, key, value):
        self._record()
        super().set(key, value)

    def delete(self, key):
        self._record()
        super().delete(key)


def test_history_writes_run_off_the_event_loop(fake_analyze):
    storage = LoopCheckingStorage()
    store = HistoryStore(storage)
    app.dependency_overrides[get_history_store] = lambda: store
    try:
        with TestClient(app) as c:
            item_id = c.post("/api/analyze", json={"url": "https://example.com"}).json()["history_id"]
            c.put(f"/api/history/{item_id}/progress", json={"user_html": "<p"})
            c.delete(f"/api/history/{item_id}")
            c.delete("/api/history")
    finally:
        app.dependency_overrides.clear()

    assert len(storage.on_loop) == 4
    assert not any(storage.on_loop)


class TestHistoryRoutes:
    def test_list_get_delete(self, client, history):
        item_id = history.add("https://a.test", "<p>a</p>", "p{}")

        listed = client.get("/api/history").json()["history"]
        assert [entry["id"] for entry in listed] == [item_id]
        assert listed[0]["age"] == "Just now"

        assert client.get(f"/api/history/{item_id}").json()["url"] == "https://a.test"
        assert client.delete(f"/api/history/{item_id}").json() == {"status": "deleted"}
        assert client.get(f"/api/history/{item_id}").status_code == 404
        assert client.delete(f"/api/history/{item_id}").status_code == 404

    def test_progress(self, client, history):
        item_id = history.add("https://a.test", "<p>a</p>", "")
        resp = client.put(f"/api/history/{item_id}/progress", json={"user_html": "<p", "user_css": ""})
        assert resp.status_code == 200
        assert history.get(item_id).user_html == "<p"

        assert client.put("/api/history/nope/progress", json={}).status_code == 404

    def test_clear(self, client, history):
        history.add("https://a.test", "", "")
        assert client.delete("/api/history").json() == {"status": "cleared"}
        assert history.items == []


def test_compare(client):
    data = client.post("/api/compare", json={"target": "<p>", "typed": "<a"}).json()
    assert data["correct"] == 1
    assert data["incorrect"] == 1
    assert data["first_error"] == 1
    assert data["finished"] is False
    assert data["diff_html"].startswith('<span class="c-correct">&lt;</span>')


def test_auto_indent(client):
    resp = client.post("/api/auto-indent", json={"target": "<ul>\n  <li>", "typed": "<ul>\n"})
    assert resp.json() == {"indent": "  "}


def test_preview(client):
    data = client.post("/api/preview", json={"html": "<p>x</p>", "css": "p{color:red}", "css_enabled": False}).json()
    assert data["document"] == (
        "<!DOCTYPE html><html><head><style>p{color:red}</style></head><body><p>x</p></body></html>"
    )
    assert "color:red" not in data["iframe"]
    assert data["iframe"].startswith("<iframe")
