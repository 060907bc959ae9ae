"""Feishu (Lark) Open API client for Feishu Morning Brief."""

import json
import time
from typing import Any

import requests

from .config import FeishuConfig
from .errors import DeliveryError
from .logging_config import create_execution_logger
from .models import Destination

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
MESSAGES_PATH = "/open-apis/im/v1/messages"

# Feishu error codes for an expired or invalid tenant token
TOKEN_INVALID_CODES = {99991661, 99991663, 99991668}

# Refresh the token this many seconds before Feishu says it expires
TOKEN_EXPIRY_MARGIN = 300


class FeishuClient:
    """Sends messages to Feishu chats through the Open API."""

    def __init__(self, config: FeishuConfig, execution_id: str | None = None):
        """Initialize the client with configuration."""
        self.config = config
        self.logger = create_execution_logger("feishu_client", execution_id)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "Feishu-Morning-Brief/1.0"})
        self._token: str | None = None
        self._token_expires_at = 0.0

        self.logger.info(
            "FeishuClient initialized",
            base_url=config.base_url,
            retry_attempts=config.retry_attempts,
        )

    def get_tenant_access_token(self, force_refresh: bool = False) -> str:
        """Return a cached tenant access token, fetching a new one when needed.

        Raises:
            DeliveryError: If Feishu refuses the app credentials
        """
        if not force_refresh and self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = self.session.post(
                f"{self.config.base_url}{TOKEN_PATH}",
                json={"app_id": self.config.app_id, "app_secret": self.config.app_secret},
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DeliveryError(f"Failed to obtain tenant access token: {e}") from e

        if body.get("code") != 0 or not body.get("tenant_access_token"):
            raise DeliveryError(
                f"Feishu rejected app credentials: code={body.get('code')} msg={body.get('msg')}"
            )

        self._token = body["tenant_access_token"]
        expire = int(body.get("expire", 7200))
        self._token_expires_at = time.monotonic() + max(expire - TOKEN_EXPIRY_MARGIN, 0)
        self.logger.debug("Obtained tenant access token", expire=expire)
        return self._token

    def handle_rate_limit(self, retry_count: int) -> None:
        """
        Handle rate limiting with exponential backoff.

        Args:
            retry_count: Current retry attempt number
        """
        backoff_time = self.config.backoff_factor**retry_count
        self.logger.warning(
            f"Rate limited, waiting {backoff_time} seconds before retry {retry_count + 1}",
            retry_count=retry_count,
            backoff_time=backoff_time,
        )
        time.sleep(backoff_time)

    def send_message(
        self, receive_id: str, receive_id_type: str, msg_type: str, content: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Send one message, retrying on rate limiting.

        Args:
            receive_id: Chat or user identifier
            receive_id_type: ``chat_id`` or ``open_id``
            msg_type: Feishu message type (``interactive``, ``text``)
            content: Message content, serialized to JSON

        Returns:
            The ``data`` object of the Feishu response

        Raises:
            DeliveryError: If the message could not be delivered
        """
        payload = {
            "receive_id": receive_id,
            "msg_type": msg_type,
            "content": json.dumps(content, ensure_ascii=False),
        }
        refreshed = False
        attempt = 0

        # Only rate-limited attempts count against retry_attempts
        while True:
            token = self.get_tenant_access_token()
            self.logger.debug(
                f"Sending message to Feishu (attempt {attempt + 1})",
                destination_id=receive_id,
                attempt=attempt + 1,
            )
            try:
                response = self.session.post(
                    f"{self.config.base_url}{MESSAGES_PATH}",
                    params={"receive_id_type": receive_id_type},
                    headers={"Authorization": f"Bearer {token}"},
                    json=payload,
                    timeout=self.config.timeout,
                )
            except requests.RequestException as e:
                raise DeliveryError(f"Network error sending to {receive_id}: {e}", receive_id) from e

            if response.status_code == 429:
                if attempt < self.config.retry_attempts - 1:
                    self.handle_rate_limit(attempt)
                    attempt += 1
                    continue
                raise DeliveryError(
                    f"Max retry attempts reached for rate limiting ({receive_id})", receive_id
                )

            try:
                body = response.json()
            except ValueError:
                body = {}

            code = body.get("code")
            if code in TOKEN_INVALID_CODES and not refreshed:
                self.logger.warning("Tenant access token rejected, refreshing", code=code)
                self.get_tenant_access_token(force_refresh=True)
                refreshed = True
                continue

            if response.status_code >= 400 or code != 0:
                raise DeliveryError(
                    f"Feishu rejected message to {receive_id}: "
                    f"status={response.status_code} code={code} msg={body.get('msg')}",
                    receive_id,
                )

            self.logger.info("Message sent successfully to Feishu", destination_id=receive_id)
            return body.get("data") or {}

    def send_card(self, destination: Destination, card: dict[str, Any]) -> dict[str, Any]:
        """Send an interactive card to a destination."""
        return self.send_message(destination.id, destination.receive_id_type, "interactive", card)

    def send_text(self, destination: Destination, text: str) -> dict[str, Any]:
        """Send a plain-text message to a destination."""
        return self.send_message(destination.id, destination.receive_id_type, "text", {"text": text})

    def test_connection(self) -> bool:
        """Check the app credentials by requesting a fresh tenant token."""
        try:
            self.get_tenant_access_token(force_refresh=True)
        except DeliveryError as e:
            self.logger.error(f"Feishu connection test failed: {e}", error=str(e))
            return False
        return True
