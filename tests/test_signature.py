"""
Tests for stable identifier hashing
"""

from topic_synth.utils.hashing import config_hash, fnv1a32, fnv1a32_hex, url_hash


def test_fnv1a32_known_vectors():
    """測試 FNV-1a 32-bit 標準向量"""
    assert fnv1a32("") == 0x811C9DC5
    assert fnv1a32("a") == 0xE40C292C
    assert fnv1a32("foobar") == 0xBF9CF968


def test_hash_stability():
    """測試相同輸入 = 相同輸出"""
    assert fnv1a32_hex("topic|2024-02-05T12|budget,senate") == fnv1a32_hex("topic|2024-02-05T12|budget,senate")


def test_hash_different_inputs():
    """測試不同輸入產生不同 hash"""
    assert fnv1a32_hex("é") != fnv1a32_hex("e")
    assert url_hash("https://example.com/a") != url_hash("https://example.com/b")


def test_url_hash_format():
    """測試 hash 格式（8 字元 hex）"""
    value = url_hash("https://example.com/story?id=1")

    assert len(value) == 8
    assert all(c in '0123456789abcdef' for c in value)


def test_config_hash_ignores_storage():
    """測試 config hash 只看穩定欄位"""
    base = {"feed_sources": [], "synthesis": {"quorum_size": 5}, "storage": {"base_dir": "a"}}
    moved = {"feed_sources": [], "synthesis": {"quorum_size": 5}, "storage": {"base_dir": "b"}}
    changed = {"feed_sources": [], "synthesis": {"quorum_size": 3}, "storage": {"base_dir": "a"}}

    assert config_hash(base) == config_hash(moved)
    assert config_hash(base) != config_hash(changed)
    assert len(config_hash(base)) == 16
