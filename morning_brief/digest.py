"""Digest card rendering for Feishu Morning Brief.

Builds Feishu interactive-card payloads. Everything here is pure: no I/O,
and the clock is injected so output is deterministic under test.
"""

import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .models import Article

DEFAULT_TITLE = "金融科技早报"
UNKNOWN_SOURCE = "未知来源"
SUMMARY_PLACEHOLDER = "点击查看详情"
WEEKDAYS = ["周一", "周二", "周三", "周四", "周五", "周六", "周日"]

SUMMARY_SENTENCE_CHARS = 40
SUMMARY_MAX_CHARS = 50

_TAG_RE = re.compile(r"<[^>]*>")
_SENTENCE_END_RE = re.compile(r"[。？！\n]")
_WHITESPACE_RE = re.compile(r"\s+")
_MARKDOWN_SPECIAL_RE = re.compile(r"([\[\]()*_])")

DIVIDER = {"tag": "hr"}


def escape_markdown(text: str) -> str:
    """Backslash-escape the characters lark_md treats as markup."""
    if not text:
        return ""
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


def short_summary(article: Article) -> str:
    """Derive a one-line summary for a digest entry.

    Takes the first sentence of the plain-text summary (or content),
    limited to 40 characters.
    """
    full_text = article.summary or article.content or ""
    plain_text = _TAG_RE.sub("", full_text).replace("\n", " ").strip()

    first_sentence = _SENTENCE_END_RE.split(plain_text)[0]
    summary = first_sentence[:SUMMARY_SENTENCE_CHARS]
    summary = _WHITESPACE_RE.sub(" ", summary).strip()

    if not summary:
        return SUMMARY_PLACEHOLDER
    if len(summary) > SUMMARY_MAX_CHARS:
        return summary[:SUMMARY_MAX_CHARS] + "..."
    return summary


def group_by_source(articles: list[Article]) -> dict[str, list[Article]]:
    """Group articles by author, keeping first-seen group order."""
    grouped: dict[str, list[Article]] = {}
    for article in articles:
        grouped.setdefault(article.author or UNKNOWN_SOURCE, []).append(article)
    return grouped


def format_time(value: datetime) -> str:
    """HH:MM in the process's local timezone."""
    return value.astimezone().strftime("%H:%M")


def _markdown(content: str) -> dict[str, Any]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def _plain(content: str) -> dict[str, Any]:
    return {"tag": "div", "text": {"tag": "plain_text", "content": content}}


class DigestRenderer:
    """Renders article lists into Feishu card payloads."""

    def __init__(self, title: str = DEFAULT_TITLE, now: Callable[[], datetime] | None = None):
        self.title = title
        self._now = now or datetime.now

    def format_date(self) -> str:
        """Today's date as ``YYYY-MM-DD 周X``."""
        today = self._now()
        return f"{today.strftime('%Y-%m-%d')} {WEEKDAYS[today.weekday()]}"

    def build_digest_card(self, articles: list[Article]) -> dict[str, Any]:
        """Build the content digest card.

        Callers must use ``build_no_news_card`` when there is nothing to send.
        """
        elements: list[dict[str, Any]] = [
            _markdown(f"**日期**: {self.format_date()}\n**文章数**: {len(articles)} 篇"),
            DIVIDER,
        ]

        groups = list(group_by_source(articles).items())
        for position, (source, source_articles) in enumerate(groups):
            elements.append(_markdown(f"**{source}** ({len(source_articles)}篇)"))
            for index, article in enumerate(source_articles, start=1):
                elements.extend(self.build_article_elements(article, index))
                if index < len(source_articles):
                    elements.append(DIVIDER)
            if position < len(groups) - 1:
                elements.append(DIVIDER)

        return {
            "config": {"wide_screen_mode": True},
            "header": {
                "title": {"tag": "plain_text", "content": self.title},
                "template": "turquoise",
            },
            "elements": elements,
        }

    def build_article_elements(self, article: Article, index: int) -> list[dict[str, Any]]:
        """Title link, short summary and time lines for one article."""
        return [
            _markdown(f"{index}. [{escape_markdown(article.title)}]({article.url})"),
            _markdown(short_summary(article)),
            _plain(f"  {format_time(article.publish_time)}"),
        ]

    def build_no_news_card(self) -> dict[str, Any]:
        """Build the card sent when a cycle found nothing new."""
        return {
            "config": {"wide_screen_mode": True},
            "header": {
                "title": {"tag": "plain_text", "content": self.title},
                "template": "grey",
            },
            "elements": [
                _markdown(f"**日期**: {self.format_date()}"),
                DIVIDER,
                _markdown("暂时没有新文章，请稍后再查看"),
                _plain("将继续监控 RSS 源，有新文章时会及时推送"),
            ],
        }
