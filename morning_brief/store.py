"""Content store for Feishu Morning Brief backed by SQLite."""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .errors import PersistenceError
from .logging_config import create_execution_logger
from .models import Article, DeliveryRecord, DeliveryStatus, Destination

SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    url TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    author TEXT,
    publish_time INTEGER,
    fetched_at INTEGER DEFAULT (strftime('%s', 'now')),
    content TEXT,
    cover_image TEXT,
    hash TEXT
);

CREATE TABLE IF NOT EXISTS send_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id TEXT REFERENCES articles(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    sent_at INTEGER DEFAULT (strftime('%s', 'now')),
    status TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_hash ON articles(hash);
CREATE INDEX IF NOT EXISTS idx_articles_publish_time ON articles(publish_time DESC);
CREATE INDEX IF NOT EXISTS idx_send_logs_target ON send_logs(target_id);
CREATE INDEX IF NOT EXISTS idx_send_logs_article_id ON send_logs(article_id);
"""


class ContentStore:
    """Persists seen articles, delivery records and key/value configuration.

    A single connection is shared between the scheduler thread and callers;
    every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: str | Path, execution_id: str | None = None):
        """Open (and create if needed) the SQLite database.

        Args:
            db_path: Path to the database file, or ``":memory:"``
            execution_id: Execution ID for logging context
        """
        self.db_path = str(db_path)
        self.logger = create_execution_logger("content_store", execution_id)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        with self._conn:
            self._conn.executescript(SCHEMA)

        self.logger.info("Content store initialized", db_path=self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Articles

    def has_hash(self, content_hash: str) -> bool:
        """Check whether an article with this dedup hash was already seen."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM articles WHERE hash = ? LIMIT 1", (content_hash,)
            ).fetchone()
        return row is not None

    def insert_articles(self, articles: Iterable[Article]) -> list[Article]:
        """Insert articles in a single transaction.

        Rows whose id or url already exist are ignored. Articles without a
        hash are skipped.

        Args:
            articles: Articles to insert

        Returns:
            The articles actually inserted, in input order

        Raises:
            PersistenceError: If the batch could not be committed; nothing is kept
        """
        saved: list[Article] = []
        try:
            with self._lock, self._conn:
                for article in articles:
                    if not article.hash:
                        continue
                    cursor = self._conn.execute(
                        """
                        INSERT OR IGNORE INTO articles
                            (id, url, title, author, publish_time, content, cover_image, hash)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            article.id,
                            article.url,
                            article.title,
                            article.author,
                            _to_millis(article.publish_time),
                            article.content or "",
                            article.cover_image or "",
                            article.hash,
                        ),
                    )
                    if cursor.rowcount:
                        saved.append(article)
        except sqlite3.Error as e:
            self.logger.error(f"Failed to persist articles: {e}", error=str(e))
            raise PersistenceError(f"Failed to persist articles: {e}") from e
        return saved

    def get_recent_articles(self, limit: int = 50) -> list[Article]:
        """Return the most recently published articles."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM articles ORDER BY publish_time DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_article(row) for row in rows]

    def count_articles(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]

    # Delivery records

    def record_deliveries(
        self,
        articles: Iterable[Article],
        destination: Destination,
        status: DeliveryStatus,
    ) -> int:
        """Append one delivery record per article for a destination.

        Raises:
            PersistenceError: If the batch could not be committed
        """
        written = 0
        try:
            with self._lock, self._conn:
                for article in articles:
                    self._conn.execute(
                        """
                        INSERT INTO send_logs (article_id, target_id, target_type, status)
                        VALUES (?, ?, ?, ?)
                        """,
                        (article.id, destination.id, destination.kind.value, status.value),
                    )
                    written += 1
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to record deliveries for {destination.id}: {e}"
            ) from e
        return written

    def is_article_sent(self, article_id: str, destination_id: str) -> bool:
        """Check whether an article was successfully delivered to a destination."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM send_logs WHERE article_id = ? AND target_id = ? AND status = ?",
                (article_id, destination_id, DeliveryStatus.SUCCESS.value),
            ).fetchone()
        return row is not None

    def get_delivery_records(self, destination_id: str | None = None) -> list[DeliveryRecord]:
        query = "SELECT * FROM send_logs"
        params: tuple = ()
        if destination_id is not None:
            query += " WHERE target_id = ?"
            params = (destination_id,)
        query += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            DeliveryRecord(
                article_id=row["article_id"],
                destination_id=row["target_id"],
                destination_type=row["target_type"],
                sent_at=datetime.fromtimestamp(int(row["sent_at"]), tz=timezone.utc),
                status=DeliveryStatus(row["status"]),
            )
            for row in rows
        ]

    # Key/value configuration

    def get_config_value(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_config_value(self, key: str, value: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO config(key, value) VALUES(?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                    (key, value),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write config key {key}: {e}") from e


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _row_to_article(row: sqlite3.Row) -> Article:
    content = row["content"] or ""
    return Article(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        author=row["author"] or "",
        publish_time=datetime.fromtimestamp((row["publish_time"] or 0) / 1000, tz=timezone.utc),
        summary=content[:200],
        content=content,
        cover_image=row["cover_image"] or None,
        hash=row["hash"],
    )
