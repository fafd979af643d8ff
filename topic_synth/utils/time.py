"""Time utilities: epoch milliseconds, UTC conversion and bucket labels."""

import calendar
import time
from datetime import datetime, timezone
from typing import Optional, Union
import pytz

HOUR_MS = 60 * 60 * 1000


def utcnow() -> datetime:
    """取得當前 UTC 時間 (tz-aware)"""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """取得當前 epoch 毫秒"""
    return int(time.time() * 1000)


def to_utc(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    轉換時間為 UTC tz-aware datetime

    Args:
        dt: 輸入時間
        tz_name: 原時區名稱 (若 dt 為 naive)

    Returns:
        UTC tz-aware datetime
    """
    if dt.tzinfo is None:
        if tz_name:
            tz = pytz.timezone(tz_name)
            dt = tz.localize(dt)
        else:
            # 假設為 UTC
            dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime, tz_name: Optional[str] = None) -> int:
    """datetime 轉 epoch 毫秒"""
    return int(to_utc(dt, tz_name).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """epoch 毫秒轉 UTC datetime"""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def struct_time_to_ms(value) -> Optional[int]:
    """
    feedparser 的 *_parsed (UTC struct_time) 轉 epoch 毫秒

    負值或無法轉換時回傳 None。
    """
    if not value:
        return None

    try:
        millis = calendar.timegm(value) * 1000
    except (TypeError, ValueError, OverflowError):
        return None

    if millis < 0:
        return None
    return millis


def parse_iso8601(date_str: str, tz_name: Optional[str] = None) -> datetime:
    """解析 ISO8601 字串為 tz-aware datetime"""
    dt = datetime.fromisoformat(date_str.replace('Z', '+00:00'))
    return to_utc(dt, tz_name)


def coerce_timestamp_ms(value: Union[int, float, str], tz_name: Optional[str] = None) -> int:
    """
    將 epoch 毫秒或 ISO8601 字串統一成 epoch 毫秒

    Args:
        value: int/float 毫秒，或 ISO8601 字串
        tz_name: naive 字串的時區

    Returns:
        epoch 毫秒
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    if text.lstrip('-').isdigit():
        return int(text)
    return to_epoch_ms(parse_iso8601(text, tz_name))


def bucket_start(timestamp: Optional[int], bucket_ms: int = HOUR_MS) -> int:
    """
    取得時間桶起點 (毫秒)

    無時間戳或負值一律落在 0。
    """
    if timestamp is None or timestamp < 0:
        return 0
    return (timestamp // bucket_ms) * bucket_ms


def get_hourly_bucket_label(bucket_start_ms: int) -> str:
    """
    取得小時桶標籤 (YYYY-MM-DDTHH, UTC)

    Args:
        bucket_start_ms: 時間桶起點 (毫秒)

    Returns:
        e.g. 2024-02-05T12
    """
    return from_epoch_ms(bucket_start_ms).strftime("%Y-%m-%dT%H")
