"""Unit tests for the SQLite content store."""

import sqlite3
from dataclasses import replace
from unittest.mock import patch

import pytest

from morning_brief.errors import PersistenceError
from morning_brief.models import DeliveryStatus, DestinationKind
from morning_brief.store import ContentStore
from tests.helpers import make_article, make_destination


class TestContentStoreUnit:
    """Unit tests for ContentStore."""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.store = ContentStore(tmp_path / "nested" / "bot.db")
        yield
        self.store.close()

    def test_creates_parent_directory(self, tmp_path):
        assert (tmp_path / "nested" / "bot.db").exists()

    def test_insert_and_lookup_by_hash(self):
        article = make_article(1)

        assert self.store.has_hash(article.hash) is False
        assert self.store.insert_articles([article]) == [article]
        assert self.store.has_hash(article.hash) is True
        assert self.store.count_articles() == 1

    def test_insert_is_idempotent_on_id_and_url(self):
        first = make_article(1)
        same_url = make_article(2, url=first.url)

        assert self.store.insert_articles([first]) == [first]
        assert self.store.insert_articles([first]) == []
        assert self.store.insert_articles([same_url]) == []
        assert self.store.count_articles() == 1

    def test_insert_returns_only_stored_articles(self):
        linkless_a = make_article(1, url="")
        linkless_b = make_article(2, url="")
        taken = make_article(3)
        republished = make_article(4, url=taken.url)

        saved = self.store.insert_articles([linkless_a, linkless_b, taken, republished])

        assert saved == [linkless_a, taken]
        assert self.store.count_articles() == 2
        assert self.store.has_hash(linkless_b.hash) is False

    def test_articles_without_hash_are_skipped(self):
        article = make_article(1)
        hashless = replace(article, hash=None)

        assert self.store.insert_articles([hashless]) == []
        assert self.store.count_articles() == 0

    def test_failed_batch_is_rolled_back(self):
        articles = [make_article(1), make_article(2)]
        original_execute = sqlite3.Connection.execute
        calls = {"n": 0}

        class FailingConnection:
            def __init__(self, conn):
                self._conn = conn

            def execute(self, sql, params=()):
                if "INSERT OR IGNORE" in sql:
                    calls["n"] += 1
                    if calls["n"] == 2:
                        raise sqlite3.OperationalError("disk I/O error")
                return original_execute(self._conn, sql, params)

            def __enter__(self):
                return self._conn.__enter__()

            def __exit__(self, *exc):
                return self._conn.__exit__(*exc)

        real_conn = self.store._conn
        self.store._conn = FailingConnection(real_conn)
        try:
            with pytest.raises(PersistenceError):
                self.store.insert_articles(articles)
        finally:
            self.store._conn = real_conn

        assert self.store.count_articles() == 0

    def test_record_deliveries_and_sent_lookup(self):
        articles = [make_article(1), make_article(2)]
        destination = make_destination("oc_1")
        self.store.insert_articles(articles)

        written = self.store.record_deliveries(articles, destination, DeliveryStatus.SUCCESS)

        assert written == 2
        assert self.store.is_article_sent("guid-1", "oc_1") is True
        assert self.store.is_article_sent("guid-1", "oc_other") is False
        records = self.store.get_delivery_records("oc_1")
        assert [r.article_id for r in records] == ["guid-1", "guid-2"]
        assert all(r.status is DeliveryStatus.SUCCESS for r in records)
        assert all(r.destination_type == "group" for r in records)

    def test_failure_records_do_not_count_as_sent(self):
        article = make_article(1)
        destination = make_destination("ou_1", DestinationKind.USER)
        self.store.insert_articles([article])

        self.store.record_deliveries([article], destination, DeliveryStatus.FAILURE)

        assert self.store.is_article_sent(article.id, "ou_1") is False
        assert self.store.get_delivery_records()[0].destination_type == "user"

    def test_record_deliveries_for_unknown_article_raises(self):
        with pytest.raises(PersistenceError):
            self.store.record_deliveries(
                [make_article(9)], make_destination(), DeliveryStatus.SUCCESS
            )

    def test_recent_articles_newest_first(self):
        self.store.insert_articles([make_article(1), make_article(5), make_article(3)])

        recent = self.store.get_recent_articles(limit=2)

        assert [a.id for a in recent] == ["guid-5", "guid-3"]

    def test_config_values_round_trip_and_overwrite(self):
        assert self.store.get_config_value("rss_sources") is None

        self.store.set_config_value("rss_sources", "[]")
        self.store.set_config_value("rss_sources", '[{"url": "https://a"}]')

        assert self.store.get_config_value("rss_sources") == '[{"url": "https://a"}]'

    def test_memory_database(self):
        with patch("morning_brief.store.Path.mkdir") as mock_mkdir:
            store = ContentStore(":memory:")
        mock_mkdir.assert_not_called()
        assert store.count_articles() == 0
        store.close()
