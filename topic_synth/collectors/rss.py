"""
RSS/Atom Feed Collector

逐一抓取啟用中的 feed，單一來源失敗只略過該來源，不影響其他來源。
僅使用 title/link/date/summary/author，不抓取全文。
"""

import html
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

import feedparser
import httpx
from pydantic import ValidationError

from topic_synth.models import FeedSource, RawItem
from topic_synth.utils import time as time_utils

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<[^>]+>')
_WS_RE = re.compile(r'\s+')

USER_AGENT = "topic-synth/0.1 (+feed ingestion)"


def collapse_whitespace(value: Optional[str]) -> Optional[str]:
    """合併空白；空字串回傳 None"""
    if not value:
        return None
    text = _WS_RE.sub(' ', value).strip()
    return text or None


def strip_html(value: Optional[str]) -> Optional[str]:
    """
    將 HTML 片段轉為純文字

    先移除 tag 再解碼 entity，避免把解碼後的 `<` `>` 誤當成 tag。
    """
    if not value:
        return None
    text = _TAG_RE.sub(' ', value)
    return collapse_whitespace(html.unescape(text))


def _typed_text(value: Optional[str], content_type: Optional[str]) -> Optional[str]:
    # feedparser 已展開 CDATA 並解碼 entity；只有 text/html 需要再轉純文字
    if content_type == 'text/html':
        return strip_html(value)
    return collapse_whitespace(value)


def _entry_text(entry: Dict[str, Any], key: str) -> Optional[str]:
    detail = entry.get(f'{key}_detail') or {}
    return _typed_text(entry.get(key), detail.get('type'))


def _entry_summary(entry: Dict[str, Any]) -> Optional[str]:
    summary = _entry_text(entry, 'summary')
    if summary:
        return summary

    # content:encoded / atom content
    for content in entry.get('content') or []:
        text = _typed_text(content.get('value'), content.get('type'))
        if text:
            return text
    return None


def _entry_published_at(entry: Dict[str, Any]) -> Optional[int]:
    for key in ('published_parsed', 'updated_parsed'):
        millis = time_utils.struct_time_to_ms(entry.get(key))
        if millis is not None:
            return millis
    return None


def parse_feed_xml(xml: Union[str, bytes], source: FeedSource) -> List[RawItem]:
    """
    解析 RSS <item> / Atom <entry>

    缺少 URL 或 title 的項目會被略過；不合 schema 的項目記錄 warning 後略過。

    Args:
        xml: feed 原始內容；傳入 bytes 時由 feedparser 依 XML 宣告判斷編碼
        source: 來源設定

    Returns:
        List of RawItem
    """
    feed = feedparser.parse(xml)

    if feed.bozo and not feed.entries:
        logger.warning(f"Feed parsing warning for '{source.id}': {feed.get('bozo_exception')}")

    items: List[RawItem] = []

    for entry in feed.entries:
        url = (entry.get('link') or '').strip()
        title = _entry_text(entry, 'title')
        if not url or not title:
            continue

        candidate = {
            'source_id': source.id,
            'url': url,
            'title': title,
            'published_at': _entry_published_at(entry),
            'summary': _entry_summary(entry),
            'author': collapse_whitespace(entry.get('author')),
        }

        try:
            items.append(RawItem(**candidate))
        except ValidationError as e:
            logger.warning(f"Invalid feed item skipped for source '{source.id}': {e}")

    return items


def validate_sources(sources: Iterable[Union[FeedSource, Dict[str, Any]]]) -> List[FeedSource]:
    """
    驗證 feed 來源設定

    不合法的項目記錄 warning 後略過，不會中斷整批。
    """
    valid: List[FeedSource] = []

    for source_input in sources:
        if isinstance(source_input, FeedSource):
            valid.append(source_input)
            continue
        try:
            valid.append(FeedSource.model_validate(source_input))
        except ValidationError as e:
            logger.warning(f"Invalid feed source skipped: {e}")

    return valid


def fetch_feed(client: httpx.Client, source: FeedSource) -> List[RawItem]:
    """
    從單一 feed 收集資料

    HTTP 非 2xx 或傳輸錯誤視為該來源 0 筆。
    """
    logger.info(f"Fetching feed: {source.id} ({source.feed_url})")

    try:
        response = client.get(source.feed_url)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch feed '{source.id}': {e}")
        return []

    if not response.is_success:
        logger.warning(f"Failed to fetch feed '{source.id}': HTTP {response.status_code}")
        return []

    items = parse_feed_xml(response.content, source)
    logger.info(f"Collected {len(items)} items from {source.id}")
    return items


def ingest_feeds(
    sources: Iterable[Union[FeedSource, Dict[str, Any]]],
    client: Optional[httpx.Client] = None,
    timeout_s: float = 20.0
) -> List[RawItem]:
    """
    從所有啟用中的 feeds 收集資料

    Args:
        sources: Feed 設定清單 (FeedSource 或 dict)
        client: 注入的 httpx.Client (測試用)；None 時自行建立並關閉
        timeout_s: 抓取逾時

    Returns:
        所有收集到的 RawItem
    """
    enabled_sources = [source for source in validate_sources(sources) if source.enabled]

    owns_client = client is None
    if owns_client:
        client = httpx.Client(
            timeout=timeout_s,
            follow_redirects=True,
            headers={'User-Agent': USER_AGENT}
        )

    all_items: List[RawItem] = []
    try:
        for source in enabled_sources:
            all_items.extend(fetch_feed(client, source))
    finally:
        if owns_client:
            client.close()

    logger.info(f"Total items collected: {len(all_items)} from {len(enabled_sources)} feeds")
    return all_items
