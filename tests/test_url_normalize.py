"""
Tests for URL canonicalization
"""

from topic_synth.processing.url_normalize import canonicalize_url, is_tracking_param


def test_canonicalize_strips_tracking_and_fragment():
    url = "HTTPS://Example.COM/path/?b=2&utm_source=x&a=1&fbclid=abc#frag"
    assert canonicalize_url(url) == "https://example.com/path?a=1&b=2"


def test_canonicalize_idempotent():
    """測試 canonicalize(canonicalize(u)) == canonicalize(u)"""
    urls = [
        "https://example.com/a/b/?z=1&y=2&gclid=x",
        "http://news.example.org/?ref=home",
        "https://example.com",
    ]
    for url in urls:
        once = canonicalize_url(url)
        assert canonicalize_url(once) == once


def test_equivalent_urls_canonicalize_identically():
    variants = [
        "https://example.com/story?id=7&page=2",
        "https://example.com/story?page=2&id=7",
        "https://example.com/story/?page=2&id=7&utm_campaign=spring#top",
        "https://EXAMPLE.com/story?ref=twitter&id=7&page=2",
    ]
    assert len({canonicalize_url(url) for url in variants}) == 1


def test_root_path_kept():
    assert canonicalize_url("https://example.com") == "https://example.com/"
    assert canonicalize_url("https://example.com/") == "https://example.com/"


def test_unparseable_url_returned_trimmed():
    assert canonicalize_url("  not a url  ") == "not a url"


def test_is_tracking_param():
    assert is_tracking_param("utm_medium")
    assert is_tracking_param("UTM_Source")
    assert is_tracking_param("gclid")
    assert not is_tracking_param("id")
