from __future__ import annotations

from mestory.services.book_stats import (
    count_words,
    derived_statistics,
    normalize_chapters,
    page_count,
    reading_time,
    strip_html,
)


def test_strip_html_removes_tags_and_entities():
    assert strip_html("<p>Hello&nbsp;<b>brave</b> world</p>") == "Hello brave world"
    assert strip_html("") == ""
    assert count_words("<h1>One</h1><p>two three</p>") == 3
    assert count_words("<p>   </p>") == 0


def test_page_count_pads_to_signatures_of_four():
    assert page_count(0) == 0
    assert page_count(1) == 4
    assert page_count(1000) == 4
    assert page_count(1001) == 8
    assert page_count(1250) == 8


def test_reading_time_rounds_up_minutes():
    assert reading_time(0) == 0
    assert reading_time(250) == 1
    assert reading_time(251) == 2


def test_normalize_chapters_orders_and_counts_words():
    chapters = normalize_chapters(
        [
            {"title": "Second", "content": "<p>b b b</p>", "order": 1},
            {"content": "<p>a a</p>", "order": 0},
            "not a chapter",
        ]
    )
    assert [c["title"] for c in chapters] == ["Chapter 2", "Second"]
    assert [c["wordCount"] for c in chapters] == [2, 3]


def test_derived_statistics():
    chapters = normalize_chapters([{"title": "A", "content": " ".join(["word"] * 300)}])
    stats = derived_statistics(chapters, ["Ada", "Bo"])
    assert stats == {
        "chapterCount": 1,
        "characterCount": 2,
        "wordCount": 300,
        "pageCount": 4,
        "readingTime": 2,
    }
