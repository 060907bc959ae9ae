"""Data models for Feishu Morning Brief."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ConfigurationError


class DeliveryStatus(str, Enum):
    """Outcome of a single delivery attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


class DestinationKind(str, Enum):
    """Kind of chat a digest is delivered to."""

    GROUP = "group"
    USER = "user"  # direct message

    @property
    def receive_id_type(self) -> str:
        return "open_id" if self is DestinationKind.USER else "chat_id"


@dataclass(frozen=True)
class Article:
    """Represents a single normalized feed article."""

    id: str
    title: str
    url: str
    author: str
    publish_time: datetime
    summary: str
    content: str | None = None
    cover_image: str | None = None
    hash: str | None = None  # md5(title + summary[:100]), dedup only


@dataclass(frozen=True)
class DeliveryRecord:
    """Audit row for one article sent to one destination."""

    article_id: str
    destination_id: str
    destination_type: str
    sent_at: datetime
    status: DeliveryStatus


def _require_str(data: dict[str, Any], key: str, kind: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{kind} descriptor requires a non-empty '{key}': {data!r}")
    return value.strip()


def _optional_bool(data: dict[str, Any], key: str, kind: str) -> bool:
    value = data.get(key, True)
    if value is None:
        return True
    if not isinstance(value, bool):
        raise ConfigurationError(f"{kind} descriptor field '{key}' must be a boolean: {data!r}")
    return value


@dataclass(frozen=True)
class FeedSource:
    """A configured RSS/Atom feed."""

    name: str
    url: str
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "FeedSource":
        """Build a FeedSource from an external descriptor.

        Args:
            data: Mapping with ``url`` and optional ``name`` and ``enabled``

        Raises:
            ConfigurationError: If the descriptor is malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Feed source descriptor must be an object: {data!r}")
        url = _require_str(data, "url", "Feed source")
        name = data.get("name") or url
        return cls(name=str(name), url=url, enabled=_optional_bool(data, "enabled", "Feed source"))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "url": self.url, "enabled": self.enabled}


@dataclass(frozen=True)
class Destination:
    """A Feishu chat that receives the digest."""

    id: str
    name: str
    kind: DestinationKind = DestinationKind.GROUP
    enabled: bool = True

    @property
    def receive_id_type(self) -> str:
        return self.kind.receive_id_type

    @classmethod
    def from_dict(cls, data: Any) -> "Destination":
        """Build a Destination from an external descriptor.

        Args:
            data: Mapping with ``id`` and optional ``name``, ``type`` and ``enabled``

        Raises:
            ConfigurationError: If the descriptor is malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Destination descriptor must be an object: {data!r}")
        dest_id = _require_str(data, "id", "Destination")
        raw_kind = data.get("type") or DestinationKind.GROUP.value
        try:
            kind = DestinationKind(raw_kind)
        except ValueError:
            raise ConfigurationError(
                f"Destination '{dest_id}' has unknown type {raw_kind!r} (expected 'group' or 'user')"
            ) from None
        name = data.get("name") or dest_id
        return cls(
            id=dest_id,
            name=str(name),
            kind=kind,
            enabled=_optional_bool(data, "enabled", "Destination"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.kind.value, "enabled": self.enabled}


@dataclass
class CycleResult:
    """Counters collected during one digest cycle."""

    sources: int = 0
    fetched: int = 0
    new: int = 0
    saved: int = 0
    destinations: int = 0
    delivered: int = 0
    failed: int = 0
    articles_sent: int = 0
    errors: list[str] = field(default_factory=list)

    def as_metrics(self) -> dict[str, Any]:
        return {
            "feeds_processed": self.sources,
            "items_found": self.fetched,
            "items_new": self.new,
            "items_saved": self.saved,
            "destinations_delivered": self.delivered,
            "destinations_failed": self.failed,
            "articles_sent": self.articles_sent,
            "errors": list(self.errors),
        }
