"""
Loads and handles config from config.yml
Credentials (X cookies, Notion, Telegram, Firecrawl) are loaded from .env for security
"""
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from grabber.processing.agent import DEFAULT_USER_PROFILE


class Config(BaseModel):
    # Core
    DATABASE_PATH: str = "data/grabber.db"
    LOG_LEVEL: str = "INFO"

    # Scheduling
    POLL_INTERVAL_SECONDS: float = 60
    DIGEST_CRON: str = "0 10 * * 0"  # Sunday 10:00
    FIRST_RUN_LIMIT: int = 200
    BATCH_LIMIT: int = 20
    ITEM_DELAY_SECONDS: float = 0.5
    CLAIM_TIMEOUT_SECONDS: float = 1800

    # Source (bird CLI)
    BIRD_CMD: str = "bird"
    SOURCE_TIMEOUT_SECONDS: float = 120
    TWITTER_AUTH_TOKEN: Optional[str] = None
    TWITTER_CT0: Optional[str] = None

    # Ollama
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"
    OLLAMA_VISION_MODEL: Optional[str] = None
    LLM_TIMEOUT_SECONDS: float = 120
    USER_PROFILE: str = DEFAULT_USER_PROFILE

    # Enrichment
    FIRECRAWL_API_KEY: Optional[str] = None
    SCRAPE_TIMEOUT_SECONDS: float = 60
    YT_DLP_CMD: str = "yt-dlp"
    TRANSCRIPT_TIMEOUT_SECONDS: float = 90

    # Notion
    NOTION_ENABLED: bool = False
    NOTION_TOKEN: Optional[str] = None
    NOTION_PARENT_PAGE_ID: Optional[str] = None

    # Telegram
    TELEGRAM_ENABLED: bool = False
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None
    NOTIFY_MIN_INTERVAL_SECONDS: float = 1.0

    # File notifier, used when Telegram is disabled
    OUTPUT_DIR: str = "output"


SECRET_KEYS = (
    "TWITTER_AUTH_TOKEN",
    "TWITTER_CT0",
    "FIRECRAWL_API_KEY",
    "NOTION_TOKEN",
    "NOTION_PARENT_PAGE_ID",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    explicit = os.getenv("GRABBER_CONFIG")
    if explicit:
        return explicit

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _setting(config: Dict[str, Any], key: str) -> Any:
    """Environment variables override config.yml."""
    if key in os.environ:
        return os.environ[key]
    return config.get(key)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    values: Dict[str, Any] = {}
    for key in Config.model_fields:
        value = os.getenv(key) if key in SECRET_KEYS else _setting(config, key)
        if value is not None:
            values[key] = value

    for key in ("NOTION_ENABLED", "TELEGRAM_ENABLED"):
        if key in values:
            values[key] = _bool(values[key])

    loaded = Config(**values)
    _validate_channels(loaded)
    return loaded


def _validate_channels(config: Config) -> None:
    missing = []
    if config.TELEGRAM_ENABLED:
        missing += [k for k in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID") if not getattr(config, k)]
    if config.NOTION_ENABLED:
        missing += [k for k in ("NOTION_TOKEN", "NOTION_PARENT_PAGE_ID") if not getattr(config, k)]

    if missing:
        raise ValueError(f"Configuration error: missing {', '.join(missing)}")
