"""Application wiring and operational handlers for Feishu Morning Brief."""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .config import Config, ConfigProvider
from .crawler import FeedCrawler
from .delivery import DeliveryManager
from .digest import DigestRenderer
from .errors import ConfigurationError
from .feishu import FeishuClient
from .logging_config import create_execution_logger
from .scheduler import Scheduler
from .store import ContentStore


@dataclass
class Application:
    """All long-lived components of one running bot."""

    config: Config
    store: ContentStore
    config_provider: ConfigProvider
    client: FeishuClient
    crawler: FeedCrawler
    delivery: DeliveryManager
    scheduler: Scheduler

    def close(self) -> None:
        self.scheduler.stop_all()
        self.store.close()


def get_feishu_credentials(config: Config, execution_id: str | None = None) -> tuple[str, str]:
    """
    Resolve the Feishu app id and secret.

    Environment values win; otherwise the JSON secret named by
    ``FEISHU_SECRET_NAME`` is read from AWS Secrets Manager. The secret must
    contain ``app_id`` and ``app_secret``.

    Args:
        config: Loaded configuration
        execution_id: Execution ID for logging context

    Returns:
        ``(app_id, app_secret)``

    Raises:
        ConfigurationError: If no complete pair of credentials is available
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if config.app_id and config.app_secret:
        return config.app_id, config.app_secret

    if not config.feishu_secret_name:
        raise ConfigurationError(
            "Missing Feishu app configuration: set FEISHU_APP_ID and FEISHU_APP_SECRET "
            "or FEISHU_SECRET_NAME"
        )

    secret_name = config.feishu_secret_name
    try:
        secrets_logger.info(f"Retrieving Feishu credentials from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=config.aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise ConfigurationError(f"Failed to retrieve secret {secret_name}") from e

    secret_value = response.get("SecretString") or ""
    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Secret {secret_name} must be a JSON object") from e
    if not isinstance(secret_data, dict):
        raise ConfigurationError(f"Secret {secret_name} must be a JSON object")

    app_id = config.app_id or str(secret_data.get("app_id", "")).strip()
    app_secret = config.app_secret or str(secret_data.get("app_secret", "")).strip()
    if not app_id or not app_secret:
        raise ConfigurationError(f"Secret {secret_name} lacks app_id or app_secret")

    secrets_logger.info("Successfully retrieved Feishu credentials")
    return app_id, app_secret


def build_application(config: Config | None = None) -> Application:
    """Create and wire every component from configuration.

    Raises:
        ConfigurationError: If credentials are missing
    """
    config = config or Config()
    app_id, app_secret = get_feishu_credentials(config)

    store = ContentStore(config.database_path)
    provider = ConfigProvider(store)
    client = FeishuClient(config.get_feishu_config(app_id, app_secret))
    crawler = FeedCrawler(store, timeout=config.fetch_timeout)
    delivery = DeliveryManager(client, store, DigestRenderer(title=config.digest_title))
    scheduler = Scheduler(
        crawler,
        delivery,
        provider,
        notify_when_empty=config.notify_when_empty,
        metrics_region=config.aws_region if config.metrics_enabled else None,
    )
    return Application(
        config=config,
        store=store,
        config_provider=provider,
        client=client,
        crawler=crawler,
        delivery=delivery,
        scheduler=scheduler,
    )


def health_handler(app: Application) -> dict[str, Any]:
    """Health check: job names and running flags."""
    return {
        "statusCode": 200,
        "body": {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "tasks": app.scheduler.status(),
        },
    }


def trigger_handler(app: Application) -> dict[str, Any]:
    """Manual trigger; any failure is reported as a 500 response."""
    logger = create_execution_logger("main")
    try:
        logger.info("Manual trigger request received")
        result = app.scheduler.trigger_now()
    except Exception as e:
        logger.exception(f"Manual trigger failed: {e}", error=str(e))
        return {
            "statusCode": 500,
            "body": {"success": False, "error": str(e) or "Send failed"},
        }
    return {
        "statusCode": 200,
        "body": {"success": True, "message": "Morning brief sent", **result},
    }
