"""Digest delivery and delivery-record bookkeeping for Feishu Morning Brief."""

from collections.abc import Sequence
from typing import Any, Protocol

from .digest import DigestRenderer
from .errors import DeliveryError, PersistenceError
from .logging_config import create_execution_logger
from .models import Article, DeliveryStatus, Destination
from .store import ContentStore


class MessageTransport(Protocol):
    """What the delivery manager needs from a messaging client."""

    def send_card(self, destination: Destination, card: dict[str, Any]) -> Any: ...

    def send_text(self, destination: Destination, text: str) -> Any: ...


class DeliveryManager:
    """Sends digests to destinations and records what was sent where."""

    def __init__(
        self,
        transport: MessageTransport,
        store: ContentStore,
        renderer: DigestRenderer,
        execution_id: str | None = None,
    ):
        self.transport = transport
        self.store = store
        self.renderer = renderer
        self.logger = create_execution_logger("delivery", execution_id)

    def send(
        self,
        destination: Destination,
        payload: dict[str, Any],
        articles: Sequence[Article] = (),
    ) -> None:
        """Send a rendered card and record one delivery row per article.

        Args:
            destination: Target chat
            payload: Rendered card
            articles: Articles included in the card

        Raises:
            DeliveryError: If the transport rejects the message
        """
        try:
            self.transport.send_card(destination, payload)
        except DeliveryError as e:
            self.logger.log_delivery(destination.id, len(articles), success=False)
            self._record(articles, destination, DeliveryStatus.FAILURE)
            if e.destination_id is None:
                e.destination_id = destination.id
            raise
        except Exception as e:
            self.logger.log_delivery(destination.id, len(articles), success=False)
            self._record(articles, destination, DeliveryStatus.FAILURE)
            raise DeliveryError(f"Failed to deliver to {destination.id}: {e}", destination.id) from e

        self.logger.log_delivery(destination.id, len(articles), success=True)
        self._record(articles, destination, DeliveryStatus.SUCCESS)

    def send_digest(self, destination: Destination, articles: Sequence[Article]) -> int:
        """Render and send the digest for one destination.

        An empty article list sends the no-new-content card. Articles this
        destination has already received are left out.

        Returns:
            Number of articles delivered

        Raises:
            DeliveryError: If the transport rejects the message
        """
        if not articles:
            self.send(destination, self.renderer.build_no_news_card())
            return 0

        pending = [a for a in articles if not self._already_sent(a, destination)]
        if not pending:
            self.logger.info(
                "All articles already delivered, skipping",
                destination_id=destination.id,
                articles_count=len(articles),
            )
            return 0

        self.send(destination, self.renderer.build_digest_card(pending), pending)
        return len(pending)

    def send_text(self, destination: Destination, text: str) -> None:
        """Send a plain-text message, bypassing the digest card.

        Raises:
            DeliveryError: If the transport rejects the message
        """
        self.transport.send_text(destination, text)
        self.logger.info("Text message sent", destination_id=destination.id)

    def _already_sent(self, article: Article, destination: Destination) -> bool:
        try:
            return self.store.is_article_sent(article.id, destination.id)
        except Exception as e:
            self.logger.warning(
                f"Could not check delivery history: {e}",
                destination_id=destination.id,
                article_title=article.title,
            )
            return False

    def _record(
        self, articles: Sequence[Article], destination: Destination, status: DeliveryStatus
    ) -> None:
        if not articles:
            return
        try:
            self.store.record_deliveries(articles, destination, status)
        except PersistenceError as e:
            self.logger.error(
                f"Failed to record delivery: {e}",
                destination_id=destination.id,
                status=status.value,
                error=str(e),
            )
