"""Configuration management for Feishu Morning Brief."""

import json
import os
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError
from .logging_config import create_execution_logger
from .models import Destination, FeedSource
from .store import ContentStore

DEFAULT_SCHEDULE = "0 8 * * *"

RSS_SOURCES_KEY = "rss_sources"
TARGET_CHATS_KEY = "target_chats"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class FeishuConfig:
    """Configuration for the Feishu Open API."""

    app_id: str
    app_secret: str
    base_url: str = "https://open.feishu.cn"
    retry_attempts: int = 3
    backoff_factor: float = 2.0
    timeout: float = 30


@dataclass
class ScheduleConfig:
    """Configuration for the scheduled digest job."""

    schedule: str = DEFAULT_SCHEDULE
    timezone: str | None = None  # None means process local time
    enabled: bool = True


class Config:
    """Main configuration manager."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.app_id = os.getenv("FEISHU_APP_ID", "")
        self.app_secret = os.getenv("FEISHU_APP_SECRET", "")
        self.feishu_secret_name = os.getenv("FEISHU_SECRET_NAME", "")
        self.feishu_base_url = os.getenv("FEISHU_BASE_URL", "https://open.feishu.cn")
        self.database_path = os.getenv("DATABASE_PATH", os.path.join("data", "bot.db"))
        self.schedule = os.getenv("MORNING_BRIEF_SCHEDULE", DEFAULT_SCHEDULE)
        self.schedule_enabled = _env_flag("MORNING_BRIEF_ENABLED", True)
        self.schedule_timezone = os.getenv("SCHEDULE_TIMEZONE") or None
        self.digest_title = os.getenv("DIGEST_TITLE", "金融科技早报")
        self.notify_when_empty = _env_flag("NOTIFY_WHEN_EMPTY", False)
        self.metrics_enabled = _env_flag("METRICS_ENABLED", False)
        self.aws_region = os.getenv("AWS_DEFAULT_REGION", "us-east-1")

        try:
            self.fetch_timeout = float(os.getenv("FETCH_TIMEOUT", "10"))
        except ValueError:
            raise ConfigurationError(
                f"FETCH_TIMEOUT must be a number, got {os.getenv('FETCH_TIMEOUT')!r}"
            ) from None

    def get_feishu_config(self, app_id: str | None = None, app_secret: str | None = None) -> FeishuConfig:
        """Get Feishu configuration.

        Credentials may be overridden with values resolved elsewhere
        (e.g. Secrets Manager).
        """
        return FeishuConfig(
            app_id=app_id if app_id is not None else self.app_id,
            app_secret=app_secret if app_secret is not None else self.app_secret,
            base_url=self.feishu_base_url.rstrip("/"),
        )

    def get_schedule_config(self) -> ScheduleConfig:
        """Get schedule configuration."""
        return ScheduleConfig(
            schedule=self.schedule,
            timezone=self.schedule_timezone,
            enabled=self.schedule_enabled,
        )


class ConfigProvider:
    """Loads feed sources and destinations.

    The content store's config table wins over the ``RSS_SOURCES`` /
    ``TARGET_CHATS`` environment values when both are present.
    """

    def __init__(
        self,
        store: ContentStore,
        environ: dict[str, str] | None = None,
        execution_id: str | None = None,
    ):
        self.store = store
        self.environ = environ if environ is not None else os.environ
        self.logger = create_execution_logger("config", execution_id)

    def _load_list(self, store_key: str, env_key: str) -> list[Any]:
        raw = self.store.get_config_value(store_key)
        origin = f"store key '{store_key}'"
        if raw is None:
            raw = self.environ.get(env_key)
            origin = f"environment variable {env_key}"
        if raw is None or not raw.strip():
            self.logger.info(f"No configuration found for {store_key}")
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {origin}: {e}") from e
        if not isinstance(data, list):
            raise ConfigurationError(f"{origin} must contain a JSON list")

        self.logger.debug(f"Loaded {len(data)} entries from {origin}", entries=len(data))
        return data

    def get_feed_sources(self) -> list[FeedSource]:
        """All configured feed sources.

        Raises:
            ConfigurationError: If the stored value or a descriptor is malformed
        """
        return [FeedSource.from_dict(item) for item in self._load_list(RSS_SOURCES_KEY, "RSS_SOURCES")]

    def get_destinations(self) -> list[Destination]:
        """All configured destinations.

        Raises:
            ConfigurationError: If the stored value or a descriptor is malformed
        """
        return [Destination.from_dict(item) for item in self._load_list(TARGET_CHATS_KEY, "TARGET_CHATS")]

    def enabled_feed_sources(self) -> list[FeedSource]:
        return [source for source in self.get_feed_sources() if source.enabled]

    def enabled_destinations(self) -> list[Destination]:
        return [dest for dest in self.get_destinations() if dest.enabled]

    def save_feed_sources(self, sources: list[FeedSource]) -> None:
        self.store.set_config_value(
            RSS_SOURCES_KEY, json.dumps([s.to_dict() for s in sources], ensure_ascii=False)
        )

    def save_destinations(self, destinations: list[Destination]) -> None:
        self.store.set_config_value(
            TARGET_CHATS_KEY, json.dumps([d.to_dict() for d in destinations], ensure_ascii=False)
        )
