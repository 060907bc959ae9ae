"""RSS crawling and deduplication for Feishu Morning Brief."""

import hashlib
import uuid
from datetime import datetime
from typing import Any, Iterable

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .errors import FetchError, PersistenceError
from .logging_config import create_execution_logger
from .models import Article, FeedSource
from .store import ContentStore

DEFAULT_TITLE = "无标题"
UNKNOWN_AUTHOR = "Unknown"


def calculate_hash(title: str, summary: str) -> str:
    """Dedup key over the title and the first 100 characters of the summary.

    md5 is used as a fingerprint only; collisions are treated as duplicates.
    """
    content = f"{title}{summary[:100]}"
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def clean_html_content(content: str) -> str:
    """Remove HTML tags from content and normalize whitespace.

    Args:
        content: Raw content that may contain HTML

    Returns:
        Clean text content without HTML tags
    """
    if not content:
        return ""

    if "<" not in content and ">" not in content:
        return " ".join(content.split())

    soup = BeautifulSoup(content, "html.parser")
    for script in soup(["script", "style"]):
        script.decompose()

    text = soup.get_text(separator=" ")
    text = text.replace("<", "").replace(">", "")
    return " ".join(text.split())


class FeedCrawler:
    """Fetches configured feeds and filters out articles already seen."""

    def __init__(
        self,
        store: ContentStore,
        timeout: float = 10,
        execution_id: str | None = None,
    ):
        """Initialize the crawler.

        Args:
            store: Content store used for dedup and persistence
            timeout: Per-feed HTTP timeout in seconds
            execution_id: Execution ID for logging context
        """
        self.store = store
        self.timeout = timeout
        self.logger = create_execution_logger("crawler", execution_id)
        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "Feishu-Morning-Brief/1.0 (RSS digest bot)"}
        )

    def fetch_feed(self, feed_url: str) -> list[Article]:
        """Fetch and normalize a single feed.

        Never raises: a failing feed is logged and yields no articles.

        Args:
            feed_url: URL of the RSS/Atom feed

        Returns:
            Articles in feed order
        """
        try:
            feed = self._download_and_parse(feed_url)
        except FetchError as e:
            self.logger.error(str(e), feed_url=feed_url, error=e.reason)
            return []

        feed_title = feed.feed.get("title", "") if hasattr(feed, "feed") else ""
        fetched_at = datetime.now().astimezone()

        articles = []
        for entry in feed.entries:
            try:
                articles.append(self.normalize_entry(entry, feed_title, fetched_at))
            except Exception as e:
                self.logger.warning(
                    f"Failed to normalize entry from {feed_url}: {e}",
                    feed_url=feed_url,
                    error=str(e),
                )

        self.logger.log_feed_processing(feed_url, len(articles), source_name=feed_title)
        return articles

    def _download_and_parse(self, feed_url: str) -> Any:
        try:
            response = self.session.get(feed_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(feed_url, str(e)) from e

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            reason = str(getattr(feed, "bozo_exception", "unparseable feed"))
            raise FetchError(feed_url, reason)
        if feed.bozo:
            self.logger.warning(
                f"Feed parsing warning for {feed_url}: {feed.get('bozo_exception')}",
                feed_url=feed_url,
            )
        return feed

    def normalize_entry(
        self, entry: Any, feed_title: str = "", fetched_at: datetime | None = None
    ) -> Article:
        """Normalize a feedparser entry into an Article.

        Args:
            entry: Raw entry from feedparser
            feed_title: Feed-level title, used as author fallback
            fetched_at: Fallback publish time

        Returns:
            Article with its dedup hash computed
        """
        now = fetched_at or datetime.now().astimezone()

        link = entry.get("link") or ""
        article_id = entry.get("id") or entry.get("guid") or link or str(uuid.uuid4())
        title = entry.get("title") or DEFAULT_TITLE
        author = (
            entry.get("author")
            or entry.get("creator")
            or entry.get("dc_creator")
            or feed_title
            or UNKNOWN_AUTHOR
        )

        content = self._full_content(entry)
        snippet = clean_html_content(entry.get("summary") or entry.get("description") or "")
        summary = snippet or (content[:200] if content else "")

        return Article(
            id=article_id,
            title=title,
            url=link,
            author=author,
            publish_time=self._parse_published(
                entry.get("published") or entry.get("updated"), now
            ),
            summary=summary,
            content=content or None,
            cover_image=self._cover_image(entry),
            hash=calculate_hash(title, summary),
        )

    @staticmethod
    def _full_content(entry: Any) -> str:
        content = entry.get("content")
        if isinstance(content, list) and content:
            return content[0].get("value", "") or ""
        if isinstance(content, str):
            return content
        return ""

    @staticmethod
    def _parse_published(published: str | None, default: datetime) -> datetime:
        if not published:
            return default
        try:
            parsed = date_parser.parse(published)
        except (ValueError, TypeError, OverflowError):
            return default
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=default.tzinfo)
        return parsed

    @staticmethod
    def _cover_image(entry: Any) -> str | None:
        for enclosure in entry.get("enclosures") or []:
            href = enclosure.get("href") or enclosure.get("url")
            if href:
                return href
        image = entry.get("image")
        if isinstance(image, dict):
            return image.get("href") or image.get("url")
        return image or None

    def fetch_all(self, sources: Iterable[FeedSource]) -> list[Article]:
        """Fetch every enabled source in order and concatenate the results."""
        enabled = [source for source in sources if source.enabled]
        self.logger.log_execution_start(feed_count=len(enabled))

        all_articles: list[Article] = []
        for source in enabled:
            articles = self.fetch_feed(source.url)
            all_articles.extend(articles)

        self.logger.log_execution_end(success=True, total_items=len(all_articles))
        return all_articles

    def filter_new(self, articles: Iterable[Article]) -> list[Article]:
        """Keep articles whose hash is not yet in the store, preserving order."""
        new_articles = []
        seen_in_batch: set[str] = set()
        for article in articles:
            if not article.hash or article.hash in seen_in_batch:
                continue
            try:
                exists = self.store.has_hash(article.hash)
            except Exception as e:
                self.logger.error(
                    f"Error checking article hash: {e}",
                    article_title=article.title,
                    error=str(e),
                )
                continue
            if not exists:
                seen_in_batch.add(article.hash)
                new_articles.append(article)
        return new_articles

    def persist(self, articles: list[Article]) -> list[Article]:
        """Save new articles atomically.

        Articles the store ignores (an id or url it already holds) are left
        out of the result, so only stored articles move on to delivery.

        Raises:
            PersistenceError: If the batch could not be committed
        """
        if not articles:
            return []
        try:
            saved = self.store.insert_articles(articles)
        except PersistenceError:
            self.logger.error("Persisting new articles failed", articles_count=len(articles))
            raise
        if len(saved) < len(articles):
            self.logger.warning(
                f"Skipped {len(articles) - len(saved)} articles with a duplicate id or url",
                skipped_count=len(articles) - len(saved),
            )
        self.logger.info(
            f"Saved {len(saved)} articles", saved_count=len(saved), articles_count=len(articles)
        )
        return saved
