"""Shared builders for tests."""

from datetime import datetime

from morning_brief.crawler import calculate_hash
from morning_brief.models import Article, Destination, DestinationKind


def make_article(
    n: int,
    author: str = "Fintech Daily",
    title: str | None = None,
    summary: str | None = None,
    url: str | None = None,
) -> Article:
    title = title if title is not None else f"Article {n}"
    summary = summary if summary is not None else f"Summary of article {n}。More text."
    return Article(
        id=f"guid-{n}",
        title=title,
        url=url if url is not None else f"https://example.com/{n}",
        author=author,
        publish_time=datetime(2024, 1, 1, 9, n % 60).astimezone(),
        summary=summary,
        content=f"<p>{summary}</p>",
        hash=calculate_hash(title, summary),
    )


def make_destination(dest_id: str = "oc_group", kind: DestinationKind = DestinationKind.GROUP) -> Destination:
    return Destination(id=dest_id, name=f"Chat {dest_id}", kind=kind)


RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Fintech Daily</title>
    <link>https://fintech.example.com</link>
    <description>Daily fintech news</description>
    <item>
      <title>Payments startup raises Series B</title>
      <link>https://fintech.example.com/a1</link>
      <guid>fintech-a1</guid>
      <description>&lt;p&gt;A payments startup raised money.&lt;/p&gt;</description>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
      <dc:creator>Alice</dc:creator>
      <enclosure url="https://fintech.example.com/a1.jpg" type="image/jpeg" length="100"/>
    </item>
    <item>
      <title>Central bank publishes rate decision</title>
      <link>https://fintech.example.com/a2</link>
      <guid>fintech-a2</guid>
      <description>Rates unchanged this month.</description>
      <pubDate>Mon, 01 Jan 2024 11:30:00 GMT</pubDate>
    </item>
    <item>
      <title>Open banking rules updated</title>
      <link>https://fintech.example.com/a3</link>
      <description>New rules take effect next year.</description>
      <pubDate>not a date</pubDate>
    </item>
  </channel>
</rss>
"""
