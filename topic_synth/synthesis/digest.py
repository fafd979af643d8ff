"""
Digest Builder

從時間窗內的驗證留言擷取 key claims / counterclaims / representative quotes，
並移除可能的參與者識別資訊。
"""

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from topic_synth.config import DigestConfig
from topic_synth.models import TopicDigest, VerifiedComment
from topic_synth.utils import hashing

REDACTION_MARKER = "[REDACTED]"
ELLIPSIS = "…"

# 16 字元以上的 hex (hash / nullifier)
_HEX_TOKEN_RE = re.compile(r'\b[0-9a-fA-F]{16,}\b')
# principal:xxx / author:xxx / user:xxx / nullifier:xxx
_IDENTIFIER_PREFIX_RE = re.compile(r'\b(principal|author|user|nullifier):\s*\S+', re.IGNORECASE)

CLAIM_STANCES = ("concur", "discuss")
COUNTER_STANCES = ("counter",)


class DigestInput(BaseModel):
    topic_id: str = Field(..., min_length=1)
    window_start: int = Field(..., ge=0)
    window_end: int = Field(..., ge=0)
    comments: List[VerifiedComment] = Field(default_factory=list)
    verified_comment_count: int = Field(..., ge=0)
    unique_verified_principals: int = Field(..., ge=0)


def sanitize_quote(text: str) -> str:
    """將疑似識別資訊替換為 [REDACTED]"""
    sanitized = _HEX_TOKEN_RE.sub(REDACTION_MARKER, text)
    sanitized = _IDENTIFIER_PREFIX_RE.sub(REDACTION_MARKER, sanitized)
    return sanitized.strip()


def derive_digest_id(topic_id: str, window_start: int, window_end: int) -> str:
    """只取決於 (topic_id, window_start, window_end)，與留言內容無關"""
    return f"dg-{hashing.fnv1a32_hex(f'digest:{topic_id}:{window_start}:{window_end}')}"


def truncate_quote(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 1] + ELLIPSIS


def _contents_for(comments: List[VerifiedComment], stances, limit: int) -> List[str]:
    contents = [
        comment.content.strip()
        for comment in comments
        if comment.stance in stances and comment.content.strip()
    ]
    return contents[:limit]


def extract_quotes(comments: List[VerifiedComment], limit: int, max_length: int) -> List[str]:
    quotes = []
    for comment in comments:
        trimmed = comment.content.strip()
        if not trimmed:
            continue

        quote = sanitize_quote(truncate_quote(trimmed, max_length))
        if quote:
            quotes.append(quote)

    return quotes[:limit]


def build_digest(
    digest_input: Union[DigestInput, Dict[str, Any]],
    config: Optional[DigestConfig] = None
) -> TopicDigest:
    """
    建立 TopicDigest

    Args:
        digest_input: 時間窗與留言 (DigestInput 或 dict；格式錯誤拋出 ValidationError)
        config: 各清單上限與 quote 長度

    Returns:
        TopicDigest
    """
    config = config or DigestConfig()
    data = digest_input if isinstance(digest_input, DigestInput) else DigestInput.model_validate(digest_input)

    return TopicDigest(
        digest_id=derive_digest_id(data.topic_id, data.window_start, data.window_end),
        topic_id=data.topic_id,
        window_start=data.window_start,
        window_end=data.window_end,
        verified_comment_count=data.verified_comment_count,
        unique_verified_principals=data.unique_verified_principals,
        key_claims=_contents_for(data.comments, CLAIM_STANCES, config.max_claims),
        salient_counterclaims=_contents_for(data.comments, COUNTER_STANCES, config.max_counterclaims),
        representative_quotes=extract_quotes(data.comments, config.max_quotes, config.max_quote_length),
    )
