"""Configuration management from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Telegram (legacy notification service and bot host)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/studynudge.db"))

    # Push notification API
    PUSH_API_URL: str = os.getenv("PUSH_API_URL", "https://onesignal.com/api/v1")
    PUSH_APP_ID: str = os.getenv("PUSH_APP_ID", "")
    PUSH_API_KEY: str = os.getenv("PUSH_API_KEY", "")

    # Delivery
    BACKEND_TIMEOUT: float = float(os.getenv("BACKEND_TIMEOUT", "8.0"))
    DEFAULT_SNOOZE_MINUTES: int = int(os.getenv("DEFAULT_SNOOZE_MINUTES", "15"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Engine
    HEARTBEAT_INTERVAL: int = int(os.getenv("HEARTBEAT_INTERVAL", "60"))
    REPLAY_INTERVAL: int = int(os.getenv("REPLAY_INTERVAL", "300"))

    @classmethod
    def push_enabled(cls) -> bool:
        """True when the push API has both an app id and a key."""
        return bool(cls.PUSH_APP_ID and cls.PUSH_API_KEY)

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if not cls.TELEGRAM_BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")

        if bool(cls.PUSH_APP_ID) != bool(cls.PUSH_API_KEY):
            raise ValueError("PUSH_APP_ID and PUSH_API_KEY must be set together")

        if cls.BACKEND_TIMEOUT <= 0:
            raise ValueError("BACKEND_TIMEOUT must be positive")

        # Ensure database directory exists
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
