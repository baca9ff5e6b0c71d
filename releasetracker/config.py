import os
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///release_tracker.db"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


class Config:
    """Application configuration, read from the environment (and .env)."""
    def __init__(self, load_env=True):
        if load_env:
            load_dotenv()
        self.database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        self.github_token: Optional[str] = os.getenv("GITHUB_TOKEN") or None
        self.github_timeout = _int_from_env("GITHUB_TIMEOUT", 15)
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.log_file: Optional[str] = os.getenv("LOG_FILE") or None
        self.api_host = os.getenv("API_HOST", "127.0.0.1")
        self.api_port = _int_from_env("API_PORT", 8000)
        self.refresh_retries = _int_from_env("REFRESH_RETRIES", 0)


def get_config(load_env=True):
    return Config(load_env=load_env)
