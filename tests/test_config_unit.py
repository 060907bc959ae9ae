"""Unit tests for configuration management."""

import json
import os
from unittest.mock import patch

import pytest

from morning_brief.config import Config, ConfigProvider, ScheduleConfig
from morning_brief.errors import ConfigurationError
from morning_brief.models import Destination, DestinationKind, FeedSource
from morning_brief.store import ContentStore


class TestConfigUnit:
    """Unit tests for Config class."""

    def test_defaults_when_environment_is_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

        assert config.database_path == os.path.join("data", "bot.db")
        assert config.schedule == "0 8 * * *"
        assert config.schedule_enabled is True
        assert config.schedule_timezone is None
        assert config.digest_title == "金融科技早报"
        assert config.notify_when_empty is False
        assert config.metrics_enabled is False
        assert config.fetch_timeout == 10.0
        assert config.feishu_base_url == "https://open.feishu.cn"

    def test_environment_overrides(self):
        env = {
            "FEISHU_APP_ID": "cli_x",
            "FEISHU_APP_SECRET": "s3cret",
            "DATABASE_PATH": "/tmp/brief.db",
            "MORNING_BRIEF_SCHEDULE": "30 7 * * 1-5",
            "MORNING_BRIEF_ENABLED": "false",
            "SCHEDULE_TIMEZONE": "Asia/Shanghai",
            "NOTIFY_WHEN_EMPTY": "yes",
            "FETCH_TIMEOUT": "2.5",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

        assert config.get_schedule_config() == ScheduleConfig(
            schedule="30 7 * * 1-5", timezone="Asia/Shanghai", enabled=False
        )
        assert config.notify_when_empty is True
        assert config.fetch_timeout == 2.5
        assert config.database_path == "/tmp/brief.db"

    def test_invalid_fetch_timeout(self):
        with patch.dict(os.environ, {"FETCH_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError, match="FETCH_TIMEOUT"):
                Config()

    def test_feishu_config_credential_override(self):
        env = {
            "FEISHU_APP_ID": "env_id",
            "FEISHU_APP_SECRET": "env_secret",
            "FEISHU_BASE_URL": "https://open.larksuite.com/",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

        assert config.get_feishu_config().app_id == "env_id"
        feishu = config.get_feishu_config("other_id", "other_secret")
        assert (feishu.app_id, feishu.app_secret) == ("other_id", "other_secret")
        assert feishu.base_url == "https://open.larksuite.com"


class TestConfigProviderUnit:
    """Unit tests for ConfigProvider."""

    def setup_method(self):
        self.store = ContentStore(":memory:")
        self.environ = {}
        self.provider = ConfigProvider(self.store, environ=self.environ)

    def teardown_method(self):
        self.store.close()

    def test_nothing_configured(self):
        assert self.provider.get_feed_sources() == []
        assert self.provider.get_destinations() == []

    def test_environment_fallback(self):
        self.environ["RSS_SOURCES"] = json.dumps([{"name": "A", "url": "https://a.example.com/rss"}])
        self.environ["TARGET_CHATS"] = json.dumps([{"id": "ou_1", "type": "user"}])

        assert self.provider.get_feed_sources() == [
            FeedSource(name="A", url="https://a.example.com/rss")
        ]
        assert self.provider.get_destinations() == [
            Destination(id="ou_1", name="ou_1", kind=DestinationKind.USER)
        ]

    def test_store_wins_over_environment(self):
        self.environ["RSS_SOURCES"] = json.dumps([{"url": "https://env.example.com/rss"}])
        self.provider.save_feed_sources([FeedSource(name="Stored", url="https://db.example.com/rss")])

        sources = self.provider.get_feed_sources()

        assert [s.url for s in sources] == ["https://db.example.com/rss"]

    def test_saved_destinations_round_trip(self):
        destinations = [
            Destination(id="oc_1", name="团队群"),
            Destination(id="ou_2", name="Boss", kind=DestinationKind.USER, enabled=False),
        ]

        self.provider.save_destinations(destinations)

        assert self.provider.get_destinations() == destinations
        assert self.provider.enabled_destinations() == destinations[:1]
        assert "团队群" in self.store.get_config_value("target_chats")

    def test_enabled_feed_sources_filters(self):
        self.environ["RSS_SOURCES"] = json.dumps(
            [
                {"url": "https://a.example.com/rss", "enabled": False},
                {"url": "https://b.example.com/rss"},
            ]
        )

        assert [s.url for s in self.provider.enabled_feed_sources()] == ["https://b.example.com/rss"]

    @pytest.mark.parametrize("raw", ["{not json", '{"url": "x"}', "42"])
    def test_malformed_value_raises(self, raw):
        self.environ["RSS_SOURCES"] = raw

        with pytest.raises(ConfigurationError):
            self.provider.get_feed_sources()

    def test_malformed_stored_value_raises(self):
        self.store.set_config_value("target_chats", "[{")

        with pytest.raises(ConfigurationError, match="target_chats"):
            self.provider.get_destinations()

    def test_blank_environment_value_is_empty(self):
        self.environ["TARGET_CHATS"] = "   "

        assert self.provider.get_destinations() == []
