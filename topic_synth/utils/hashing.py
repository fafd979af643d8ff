"""Hashing utilities for stable identifiers and config fingerprints."""

import hashlib
import json
from typing import Dict, Any

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193


def fnv1a32(text: str) -> int:
    """
    FNV-1a 32-bit hash (非加密，只用於穩定 ID)

    以 UTF-16 code unit 逐一處理，讓 ID 與其他語言的實作一致。

    Args:
        text: 輸入字串

    Returns:
        32-bit unsigned int
    """
    value = FNV_OFFSET_BASIS
    data = text.encode('utf-16-le')

    for i in range(0, len(data), 2):
        value ^= data[i] | (data[i + 1] << 8)
        value = (value * FNV_PRIME) & 0xFFFFFFFF

    return value


def to_hex(value: int) -> str:
    """32-bit 整數轉為 8 字元 hex"""
    return format(value & 0xFFFFFFFF, '08x')


def fnv1a32_hex(text: str) -> str:
    """fnv1a32 的 8 字元 hex 表示"""
    return to_hex(fnv1a32(text))


def url_hash(canonical_url: str) -> str:
    """
    產生 URL hash

    Args:
        canonical_url: 正規化後的 URL

    Returns:
        8 字元 hex
    """
    return fnv1a32_hex(canonical_url)


def config_hash(config_dict: Dict[str, Any]) -> str:
    """
    產生 config hash

    Args:
        config_dict: 設定字典

    Returns:
        SHA256 hash (hex, 前 16 字元)
    """
    # 排除會變動的欄位 (例如 storage.base_dir)
    stable_keys = ['feed_sources', 'topic_mapping', 'normalize', 'cluster', 'synthesis', 'digest']
    stable_config = {k: config_dict.get(k) for k in stable_keys if k in config_dict}

    json_str = json.dumps(stable_config, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(json_str.encode('utf-8')).hexdigest()[:16]
