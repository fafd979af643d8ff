"""
Tests for normalization & deduplication logic
"""

import pytest

from topic_synth.models import RawItem
from topic_synth.processing.dedupe import (
    deduplicate_items,
    extract_entity_keys,
    normalize_and_dedup,
    normalize_item,
    normalize_title,
)

BASE_TS = 1_700_000_000_000


def create_test_item(
    url: str,
    title: str = "Senate passes budget",
    source_id: str = "src-a",
    published_at: int = BASE_TS,
    summary: str = None
) -> RawItem:
    """Helper to create test item"""
    return RawItem(
        source_id=source_id,
        url=url,
        title=title,
        published_at=published_at,
        summary=summary,
    )


def test_dedupe_by_url():
    """測試 canonical URL 去重 (追蹤參數不同仍視為同一篇)"""
    item1 = create_test_item("https://example.com/article1?utm_source=rss", title="First")
    item2 = create_test_item("https://EXAMPLE.com/article1/#comments", title="Second")

    deduped, stats = deduplicate_items([item1, item2])

    assert len(deduped) == 1
    assert deduped[0].title == "First"  # 保留第一次出現者
    assert stats['duplicates_by_url'] == 1


def test_dedupe_by_title():
    """測試同來源、同標題、同時間窗的近似重複"""
    item1 = create_test_item("https://example.com/a", title="Fed Raises Rates!")
    item2 = create_test_item("https://example.com/b", title="fed   raises rates", published_at=BASE_TS + 60_000)

    deduped, stats = deduplicate_items([item1, item2])

    assert len(deduped) == 1
    assert deduped[0].url == "https://example.com/a"
    assert stats['duplicates_by_title'] == 1


def test_near_duplicate_requires_same_source():
    """測試不同來源的相同標題不會被合併"""
    item1 = create_test_item("https://example.com/a", title="Fed raises rates", source_id="src-a")
    item2 = create_test_item("https://example.com/b", title="Fed raises rates", source_id="src-b")

    deduped, stats = deduplicate_items([item1, item2])

    assert len(deduped) == 2
    assert stats['duplicates_by_title'] == 0


def test_near_duplicate_respects_window():
    """測試落在不同時間窗的相同標題不會被合併"""
    item1 = create_test_item("https://example.com/a", title="Fed raises rates")
    item2 = create_test_item("https://example.com/b", title="Fed raises rates", published_at=BASE_TS + 3_600_000)

    deduped, _ = deduplicate_items([item1, item2])
    assert len(deduped) == 2

    # 放大時間窗後即視為重複
    deduped, _ = deduplicate_items([item1, item2], near_duplicate_window_ms=24 * 3_600_000)
    assert len(deduped) == 1


def test_undated_items_share_bucket():
    """測試無時間戳的項目自成一桶"""
    item1 = create_test_item("https://example.com/a", title="Breaking news", published_at=None)
    item2 = create_test_item("https://example.com/b", title="Breaking news", published_at=None)
    item3 = create_test_item("https://example.com/c", title="Breaking news")

    deduped, stats = deduplicate_items([item1, item2, item3])

    assert [item.url for item in deduped] == ["https://example.com/a", "https://example.com/c"]
    assert stats['duplicates_by_title'] == 1


def test_no_duplicates():
    """測試沒有重複的情況 (保留輸入順序)"""
    items = [
        create_test_item("https://example.com/article3", title="Third story"),
        create_test_item("https://example.com/article1", title="First story"),
        create_test_item("https://example.com/article2", title="Second story"),
    ]

    deduped, stats = deduplicate_items(items)

    assert [item.title for item in deduped] == ["Third story", "First story", "Second story"]
    assert stats['duplicates_by_url'] == 0
    assert stats['duplicates_by_title'] == 0
    assert stats['final_count'] == 3


def test_invalid_items_skipped():
    """測試不合法的 dict 項目略過，不中斷整批"""
    items = [
        {"source_id": "src-a", "url": "https://example.com/ok", "title": "Valid"},
        {"source_id": "src-a", "url": "not-a-url", "title": "Invalid"},
        {"source_id": "src-a", "url": "https://example.com/missing-title"},
    ]

    deduped = normalize_and_dedup(items)

    assert len(deduped) == 1
    assert deduped[0].title == "Valid"


def test_invalid_window_rejected():
    with pytest.raises(ValueError):
        deduplicate_items([], near_duplicate_window_ms=0)


def test_normalize_title():
    assert normalize_title("  Fed Raises   Rates!!! ") == "fed raises rates"


def test_extract_entity_keys():
    """測試 entity keys: 小寫、長度 ≥ 4、去 stopwords、去重排序"""
    keys = extract_entity_keys("The Senate passed THIS budget, with senate votes")
    assert keys == ["budget", "passed", "senate", "votes"]


def test_normalize_item():
    item = create_test_item(
        "https://Example.com/story/?utm_medium=email&id=7",
        title="Senate passes budget",
        summary="Lawmakers approve spending",
    )

    normalized = normalize_item(item)

    assert normalized.publisher == "src-a"
    assert normalized.canonical_url == "https://example.com/story?id=7"
    assert normalized.url == item.url
    assert len(normalized.url_hash) == 8
    assert "lawmakers" in normalized.entity_keys
    assert "senate" in normalized.entity_keys
