"""Unit tests for digest card rendering."""

from dataclasses import replace
from datetime import datetime

from morning_brief.digest import (
    SUMMARY_PLACEHOLDER,
    DigestRenderer,
    escape_markdown,
    group_by_source,
    short_summary,
)
from tests.helpers import make_article


def _contents(card):
    return [element.get("text", {}).get("content") for element in card["elements"]]


class TestDigestRendererUnit:
    """Unit tests for DigestRenderer."""

    def setup_method(self):
        """Fix the clock on a Wednesday."""
        self.renderer = DigestRenderer(now=lambda: datetime(2024, 3, 6, 8, 0))

    def test_header_states_date_weekday_and_count(self):
        card = self.renderer.build_digest_card([make_article(1), make_article(2)])

        assert card["header"]["title"]["content"] == "金融科技早报"
        assert card["header"]["template"] == "turquoise"
        assert card["elements"][0]["text"]["content"] == "**日期**: 2024-03-06 周三\n**文章数**: 2 篇"
        assert card["elements"][1] == {"tag": "hr"}

    def test_article_lines(self):
        article = make_article(7, title="Fed [live] (update) *now*_", summary="利率维持不变。后续观察")

        elements = self.renderer.build_article_elements(article, 3)

        assert elements[0]["text"] == {
            "tag": "lark_md",
            "content": "3. [Fed \\[live\\] \\(update\\) \\*now\\*\\_](https://example.com/7)",
        }
        assert elements[1]["text"]["content"] == "利率维持不变"
        assert elements[2]["text"] == {"tag": "plain_text", "content": "  09:07"}

    def test_two_authors_produce_two_sections_without_trailing_divider(self):
        articles = [
            make_article(1, author="Reuters"),
            make_article(2, author="Bloomberg"),
            make_article(3, author="Reuters"),
        ]

        card = self.renderer.build_digest_card(articles)
        contents = _contents(card)

        headings = [c for c in contents if c and c.startswith("**") and "篇)" in c]
        assert headings == ["**Reuters** (2篇)", "**Bloomberg** (1篇)"]
        reuters = contents.index("**Reuters** (2篇)")
        bloomberg = contents.index("**Bloomberg** (1篇)")
        assert "1. [Article 1]" in contents[reuters + 1]
        assert "2. [Article 3]" in contents[reuters + 5]
        assert "1. [Article 2]" in contents[bloomberg + 1]
        # Divider between the groups, none after the last one
        assert card["elements"][bloomberg - 1] == {"tag": "hr"}
        assert card["elements"][-1] != {"tag": "hr"}

    def test_single_group_has_no_trailing_divider(self):
        card = self.renderer.build_digest_card([make_article(1)])

        assert card["elements"][-1]["text"]["tag"] == "plain_text"
        assert card["elements"].count({"tag": "hr"}) == 1

    def test_no_news_card(self):
        card = self.renderer.build_no_news_card()

        assert card["header"]["template"] == "grey"
        assert card["elements"][0]["text"]["content"] == "**日期**: 2024-03-06 周三"
        assert "暂时没有新文章" in card["elements"][2]["text"]["content"]

    def test_custom_title(self):
        renderer = DigestRenderer(title="Morning Brief")

        assert renderer.build_no_news_card()["header"]["title"]["content"] == "Morning Brief"


class TestShortSummaryUnit:
    """Unit tests for the one-line summary."""

    def test_first_sentence_from_html(self):
        article = make_article(1, summary="<p>央行宣布降准。</p><p>市场反应积极！</p>")

        assert short_summary(article) == "央行宣布降准"

    def test_truncated_to_forty_characters(self):
        article = make_article(1, summary="字" * 80)

        assert short_summary(article) == "字" * 40

    def test_whitespace_and_newlines_collapsed(self):
        article = make_article(1, summary="  Markets\n\n  rallied   today  ")

        assert short_summary(article) == "Markets rallied today"

    def test_falls_back_to_content(self):
        article = replace(make_article(1), summary="", content="<p>Content only. No terminator</p>")

        assert short_summary(article) == "Content only. No terminator"

    def test_empty_text_uses_placeholder(self):
        article = make_article(1, summary="<br/>   ")

        assert short_summary(article) == SUMMARY_PLACEHOLDER


class TestHelpersUnit:
    """Unit tests for markdown escaping and grouping."""

    def test_escape_markdown(self):
        assert escape_markdown("a_b*c(d)[e]") == "a\\_b\\*c\\(d\\)\\[e\\]"
        assert escape_markdown("") == ""

    def test_group_by_source_keeps_first_seen_order(self):
        articles = [
            make_article(1, author="B"),
            make_article(2, author=""),
            make_article(3, author="A"),
            make_article(4, author="B"),
        ]

        grouped = group_by_source(articles)

        assert list(grouped) == ["B", "未知来源", "A"]
        assert [a.id for a in grouped["B"]] == ["guid-1", "guid-4"]
