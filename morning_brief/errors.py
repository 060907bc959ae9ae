"""Exception types for Feishu Morning Brief."""


class MorningBriefError(Exception):
    """Base class for all errors raised by the bot."""


class FetchError(MorningBriefError):
    """A single feed could not be downloaded or parsed."""

    def __init__(self, feed_url: str, reason: str):
        self.feed_url = feed_url
        self.reason = reason
        super().__init__(f"Failed to fetch feed {feed_url}: {reason}")


class InvalidScheduleError(MorningBriefError):
    """A cron expression could not be parsed."""


class DeliveryError(MorningBriefError):
    """The messaging platform rejected a message."""

    def __init__(self, message: str, destination_id: str | None = None):
        self.destination_id = destination_id
        super().__init__(message)


class ConfigurationError(MorningBriefError):
    """Required configuration (sources, destinations, credentials) is missing or invalid."""


class PersistenceError(MorningBriefError):
    """A write to the content store failed and was rolled back."""
