"""
URL canonicalization

移除追蹤參數、fragment，排序 query，確保 canonical URL 穩定且可重複套用。
"""

from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

# 追蹤參數清單 (utm_* 另外以前綴判斷)
TRACKING_PARAMS = {
    'fbclid', 'gclid', 'msclkid', '_ga',
    'mc_cid', 'mc_eid',
    'ref', 'ref_src', 's'
}


def is_tracking_param(key: str) -> bool:
    """判斷 query key 是否為追蹤參數"""
    normalized = key.strip().lower()
    return normalized.startswith('utm_') or normalized in TRACKING_PARAMS


def canonicalize_url(url: str) -> str:
    """
    正規化 URL

    1. Lowercase scheme/host
    2. 移除 fragment (#xxx)
    3. 移除追蹤參數 (utm_*, fbclid, gclid, ref, ...)
    4. 其餘參數依 key 排序
    5. 去除 path 結尾斜線 (root 保留 "/")

    無法解析的 URL 原樣 (trim 後) 回傳。

    Args:
        url: 原始 URL

    Returns:
        canonical URL
    """
    raw = url.strip()

    try:
        parsed = urlsplit(raw)
    except ValueError:
        return raw

    if not parsed.scheme or not parsed.netloc:
        return raw

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path.rstrip('/') or '/'

    # sorted() 為 stable，同 key 的多個值保留原順序
    retained = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not is_tracking_param(key)
    ]
    retained.sort(key=lambda pair: pair[0])
    query = urlencode(retained)

    return urlunsplit((scheme, netloc, path, query, ''))
