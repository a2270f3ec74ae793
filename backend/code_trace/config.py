from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    anthropic_api_key: str = ""

    # LLM defaults
    default_model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 8192
    llm_timeout: float = 180.0  # seconds
    html_char_limit: int = 20000
    analyze_timeout: int = 300  # seconds, whole fetch + generate + download run

    # Image download
    max_images: int = 10
    images_dir: str = os.path.join(os.path.dirname(__file__), "..", "public", "analyzed-images")
    images_url_prefix: str = "/analyzed-images"
    fetch_timeout: float = 30.0  # seconds

    # History
    history_path: str = os.path.join(os.path.dirname(__file__), "..", "data", "history.json")
    max_history: int = 20

    # Screenshot
    page_load_timeout: int = 30000  # milliseconds
    viewport_width: int = 1280
    viewport_height: int = 800
    screenshot_max_width: int = 1280  # wider captures are scaled down before upload
    screenshot_quality: int = 75  # JPEG quality sent to the model

    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    log_level: str = "INFO"

    class Config:
        # Look for .env in the repo root (two levels up from backend/code_trace/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
