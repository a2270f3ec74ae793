import os
import tempfile

import pytest

# Settings are cached on first use; point them at scratch space before any import of the app.
_SCRATCH = tempfile.mkdtemp(prefix="code-trace-tests-")
os.environ["IMAGES_DIR"] = os.path.join(_SCRATCH, "analyzed-images")
os.environ["HISTORY_PATH"] = os.path.join(_SCRATCH, "history.json")
os.environ["ANTHROPIC_API_KEY"] = "test-key"

from code_trace.config import get_settings  # noqa: E402

get_settings.cache_clear()


@pytest.fixture
def settings():
    return get_settings()


class FakeBlock:
    def __init__(self, text):
        self.type = "text"
        self.text = text


class FakeResponse:
    def __init__(self, text):
        self.content = [FakeBlock(text)]
        self.stop_reason = "end_turn"


class FakeMessages:
    def __init__(self, text):
        self.text = text
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return FakeResponse(self.text)


class FakeClaude:
    """Stand-in for anthropic.AsyncAnthropic that returns canned text."""

    def __init__(self, text):
        self.messages = FakeMessages(text)


@pytest.fixture
def fake_claude():
    return FakeClaude
