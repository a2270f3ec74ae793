"""
History of past analyses: newest first, capped at ``max_items``.

The list lives behind a tiny key-value interface so the same store works
over a JSON file on disk or a plain dict in tests.
"""

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

HISTORY_KEY = "code-trace-history"
MAX_HISTORY = 20


@dataclass
class HistoryItem:
    id: str
    url: str
    timestamp: int
    template_html: str
    template_css: str
    user_html: str = ""
    user_css: str = ""


class MemoryStorage:
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Key-value pairs in a single JSON object on disk."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        # anything but an object is treated as an empty store
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp, self.path)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryStore:
    def __init__(self, storage, key: str = HISTORY_KEY, max_items: int = MAX_HISTORY):
        self.storage = storage
        self.key = key
        self.max_items = max_items
        self._items: list[HistoryItem] = []
        self._lock = threading.Lock()
        self.load()

    @property
    def items(self) -> list[HistoryItem]:
        return list(self._items)

    def load(self) -> list[HistoryItem]:
        """(Re)read the list from storage. Unreadable data leaves an empty history."""
        try:
            raw = self.storage.get(self.key)
            self._items = [HistoryItem(**entry) for entry in json.loads(raw)] if raw else []
        except (OSError, ValueError, TypeError) as e:
            logger.error("[history] Failed to load history: %s", e)
            self._items = []
        return self.items

    def _save(self) -> None:
        try:
            self.storage.set(self.key, json.dumps([asdict(item) for item in self._items]))
        except (OSError, TypeError, ValueError) as e:
            logger.error("[history] Failed to save history: %s", e)

    def add(self, url: str, template_html: str, template_css: str,
            user_html: str = "", user_css: str = "") -> str:
        """Prepend a new entry and return its id."""
        now = _now_ms()
        with self._lock:
            # ids are millisecond stamps; two adds in the same ms still need distinct ids
            item_id = str(now)
            taken = {item.id for item in self._items}
            while item_id in taken:
                now += 1
                item_id = str(now)
            item = HistoryItem(
                id=item_id,
                url=url,
                timestamp=now,
                template_html=template_html,
                template_css=template_css,
                user_html=user_html,
                user_css=user_css,
            )
            self._items = [item, *self._items][: self.max_items]
            self._save()
        return item.id

    def get(self, item_id: str) -> HistoryItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def remove(self, item_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.id != item_id]
            removed = len(self._items) != before
            self._save()
        return removed

    def update_progress(self, item_id: str, user_html: str, user_css: str) -> HistoryItem | None:
        """Store what the user has typed so far for a later restore."""
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            item.user_html = user_html
            item.user_css = user_css
            self._save()
        return item

    def clear(self) -> None:
        with self._lock:
            self._items = []
            try:
                self.storage.delete(self.key)
            except (OSError, ValueError) as e:
                logger.error("[history] Failed to clear history: %s", e)


def format_relative_time(timestamp_ms: int, now_ms: int | None = None) -> str:
    """Short "5m ago" style label; a plain date once the entry is a week old."""
    if now_ms is None:
        now_ms = _now_ms()
    diff = now_ms - timestamp_ms
    minutes = diff // 60000
    hours = diff // 3600000
    days = diff // 86400000

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d")
