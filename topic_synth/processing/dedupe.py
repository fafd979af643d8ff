"""
Normalization & deduplication

去重策略 (依輸入順序，保留第一次出現者):
1. canonical_url 相同 → 重複
2. 同一來源、正規化標題相同、且落在同一時間窗 → 近似重複
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Tuple, Union

from pydantic import ValidationError

from topic_synth.models import NormalizedItem, RawItem
from topic_synth.processing.url_normalize import canonicalize_url
from topic_synth.utils import hashing
from topic_synth.utils.time import HOUR_MS

logger = logging.getLogger(__name__)

DEFAULT_NEAR_DUPLICATE_WINDOW_MS = HOUR_MS

MIN_ENTITY_KEY_LENGTH = 4

STOPWORDS = {
    'about', 'after', 'again', 'against', 'among',
    'been', 'being', 'from', 'have', 'into',
    'that', 'their', 'there', 'these', 'this',
    'those', 'with',
}

_NON_ALNUM_RE = re.compile(r'[^a-z0-9\s]+')
_WS_RE = re.compile(r'\s+')


def normalize_title(title: str) -> str:
    """小寫、去標點、合併空白"""
    text = _NON_ALNUM_RE.sub(' ', title.lower())
    return _WS_RE.sub(' ', text).strip()


def extract_entity_keys(text: str) -> List[str]:
    """
    產生詞彙 entity keys

    小寫 token，長度 ≥ 4，移除 stopwords，去重後排序。
    """
    tokens = _NON_ALNUM_RE.sub(' ', text.lower()).split()
    keys = {
        token for token in tokens
        if len(token) >= MIN_ENTITY_KEY_LENGTH and token not in STOPWORDS
    }
    return sorted(keys)


def near_duplicate_key(item: RawItem, window_ms: int = DEFAULT_NEAR_DUPLICATE_WINDOW_MS) -> str:
    """
    近似重複 key: source_id | 正規化標題 | 時間桶

    無時間戳的項目自成一桶 (-1)。
    """
    time_bucket = item.published_at // window_ms if item.published_at is not None else -1
    return f"{item.source_id}|{normalize_title(item.title)}|{time_bucket}"


def normalize_item(item: RawItem) -> NormalizedItem:
    """RawItem → NormalizedItem"""
    canonical_url = canonicalize_url(item.url)

    return NormalizedItem(
        source_id=item.source_id,
        publisher=item.source_id,
        url=item.url,
        canonical_url=canonical_url,
        title=item.title,
        published_at=item.published_at,
        summary=item.summary,
        author=item.author,
        url_hash=hashing.url_hash(canonical_url),
        entity_keys=extract_entity_keys(f"{item.title} {item.summary or ''}"),
    )


def _coerce_raw_items(items: Iterable[Union[RawItem, Dict[str, Any]]]) -> List[RawItem]:
    parsed: List[RawItem] = []
    for item in items:
        if isinstance(item, RawItem):
            parsed.append(item)
            continue
        try:
            parsed.append(RawItem.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Invalid raw item skipped: {e}")
    return parsed


def deduplicate_items(
    items: Iterable[Union[RawItem, Dict[str, Any]]],
    near_duplicate_window_ms: int = DEFAULT_NEAR_DUPLICATE_WINDOW_MS
) -> Tuple[List[NormalizedItem], Dict[str, int]]:
    """
    正規化並去重

    Args:
        items: 原始 items (依抓取順序)
        near_duplicate_window_ms: 近似重複時間窗

    Returns:
        (去重後的 items, 統計資訊)
    """
    if near_duplicate_window_ms <= 0:
        raise ValueError(f"near_duplicate_window_ms must be positive: {near_duplicate_window_ms}")

    raw_items = _coerce_raw_items(items)

    stats = {
        'original_count': len(raw_items),
        'duplicates_by_url': 0,
        'duplicates_by_title': 0,
        'final_count': 0
    }

    seen_urls = set()
    seen_near_keys = set()
    normalized: List[NormalizedItem] = []

    for item in raw_items:
        canonical_url = canonicalize_url(item.url)
        if canonical_url in seen_urls:
            stats['duplicates_by_url'] += 1
            continue

        near_key = near_duplicate_key(item, near_duplicate_window_ms)
        if near_key in seen_near_keys:
            stats['duplicates_by_title'] += 1
            continue

        seen_urls.add(canonical_url)
        seen_near_keys.add(near_key)
        normalized.append(normalize_item(item))

    stats['final_count'] = len(normalized)
    logger.info(f"Total dedupe: {stats['original_count']} -> {stats['final_count']} " +
                f"({stats['duplicates_by_url']} by url, {stats['duplicates_by_title']} by title)")

    return normalized, stats


def normalize_and_dedup(
    items: Iterable[Union[RawItem, Dict[str, Any]]],
    near_duplicate_window_ms: int = DEFAULT_NEAR_DUPLICATE_WINDOW_MS
) -> List[NormalizedItem]:
    """deduplicate_items 的簡化版，只回傳 items (保留首見順序)"""
    normalized, _ = deduplicate_items(items, near_duplicate_window_ms)
    return normalized
