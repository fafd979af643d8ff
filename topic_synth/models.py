"""
Core data models for the topic synthesis pipeline

Feed 側 (FeedSource → RawItem → NormalizedItem → StoryBundle) 與
討論側 (CommentEvent → TopicDigest → SynthesisCandidate → TopicSynthesisOutput) 的契約。
所有時間欄位皆為 epoch 毫秒 (UTC)。
"""

from typing import Optional, List, Literal
from urllib.parse import urlsplit
from pydantic import BaseModel, ConfigDict, Field, field_validator

STORY_BUNDLE_SCHEMA_VERSION = "story-bundle-v0"
TOPIC_SYNTHESIS_SCHEMA_VERSION = "topic-synthesis-v2"


def _require_absolute_url(value: str) -> str:
    parts = urlsplit(value.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute URL: {value!r}")
    return value


# ── Feed side ──────────────────────────────────────────────────────


class FeedSource(BaseModel):
    """個別 feed 來源設定 (讀取後不可變)"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1, description="來源 ID")
    name: str = Field(..., min_length=1, description="來源名稱")
    feed_url: str = Field(..., description="RSS/Atom feed URL")
    trust_tier: Optional[Literal["primary", "secondary"]] = Field(None, description="信任等級")
    enabled: bool = Field(..., description="是否啟用")

    @field_validator("feed_url")
    @classmethod
    def check_feed_url(cls, value: str) -> str:
        parts = urlsplit(value.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"feed_url must be an absolute http(s) URL: {value!r}")
        return value.strip()


class RawItem(BaseModel):
    """從 feed 解析出的原始項目 (尚未正規化)"""
    model_config = ConfigDict(extra="forbid")

    source_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    published_at: Optional[int] = Field(None, ge=0, description="發布時間 (epoch ms)")
    summary: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        return _require_absolute_url(value)


class NormalizedItem(BaseModel):
    """
    正規化後的項目

    canonical_url 移除追蹤參數並排序 query；url_hash = fnv1a32(canonical_url)；
    entity_keys 為排序、去重後的詞彙 key。
    """
    model_config = ConfigDict(extra="forbid")

    source_id: str = Field(..., min_length=1)
    publisher: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    canonical_url: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    published_at: Optional[int] = Field(None, ge=0)
    summary: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    url_hash: str = Field(..., min_length=1, description="8 字元 hex")
    entity_keys: List[str] = Field(default_factory=list)


class StoryBundleSource(BaseModel):
    """Story bundle 內的單一來源"""
    model_config = ConfigDict(extra="forbid")

    source_id: str = Field(..., min_length=1)
    publisher: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1, description="canonical URL")
    url_hash: str = Field(..., min_length=1)
    published_at: Optional[int] = Field(None, ge=0)
    title: str = Field(..., min_length=1)


class ClusterFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_keys: List[str] = Field(..., min_length=1)
    time_bucket: str = Field(..., min_length=1, description="UTC 小時桶 YYYY-MM-DDTHH")
    semantic_signature: str = Field(..., min_length=1)


class StoryBundle(BaseModel):
    """
    Story-level 聚合 (每個事件一筆)

    story_id 與 provenance_hash 只取決於 cluster 內容，與到達順序無關。
    """
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal["story-bundle-v0"] = STORY_BUNDLE_SCHEMA_VERSION
    story_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    headline: str = Field(..., min_length=1)
    summary_hint: Optional[str] = Field(None, min_length=1)
    window_start: int = Field(..., ge=0)
    window_end: int = Field(..., ge=0)
    sources: List[StoryBundleSource] = Field(..., min_length=1)
    cluster_features: ClusterFeatures
    provenance_hash: str = Field(..., min_length=1)
    created_at: int = Field(..., ge=0)


class BundleVerification(BaseModel):
    """
    StoryBundle 的聚類可信度

    confidence = 0.4 * entity 重疊率 + 0.3 * 時間接近度 + 0.3 * 來源多樣性
    """
    model_config = ConfigDict(extra="forbid")

    story_id: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0, le=1)
    evidence: List[str] = Field(default_factory=list, description="entity_overlap / time_proximity / source_count")
    method: Literal["entity_time_cluster"] = "entity_time_cluster"
    verified_at: int = Field(..., ge=0)


# ── Discussion side ────────────────────────────────────────────────


class CommentEvent(BaseModel):
    """留言事件；只帶 hashed principal，不含原始身分"""
    comment_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    principal_hash: str = Field(..., min_length=1)
    verified: bool
    kind: Literal["add", "retract"]
    timestamp: int = Field(..., ge=0)


class VerifiedComment(BaseModel):
    comment_id: str = Field(..., min_length=1)
    content: str
    stance: Literal["concur", "counter", "discuss"]
    principal_hash: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0)


class TopicEpochMeta(BaseModel):
    """由外部系統提供，本核心唯讀"""
    current_epoch: int = Field(..., ge=0)
    last_epoch_timestamp: Optional[int] = Field(None, ge=0)
    epochs_today: int = Field(..., ge=0)


class TopicDigest(BaseModel):
    """
    驗證留言的摘要

    digest_id 只取決於 (topic_id, window_start, window_end)。
    """
    digest_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    window_start: int = Field(..., ge=0)
    window_end: int = Field(..., ge=0)
    verified_comment_count: int = Field(..., ge=0)
    unique_verified_principals: int = Field(..., ge=0)
    key_claims: List[str] = Field(default_factory=list)
    salient_counterclaims: List[str] = Field(default_factory=list)
    representative_quotes: List[str] = Field(default_factory=list)


class SynthesisProvider(BaseModel):
    provider_id: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    kind: Literal["local", "remote"]


class Frame(BaseModel):
    frame: str = Field(..., min_length=1)
    reframe: str = Field(..., min_length=1)


class SynthesisCandidate(BaseModel):
    """外部產生的 synthesis 候選"""
    candidate_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    epoch: int = Field(..., ge=0)
    facts_summary: str = Field(..., min_length=1)
    frames: List[Frame] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    divergence_hints: List[str] = Field(default_factory=list)
    provider: SynthesisProvider
    created_at: int = Field(..., ge=0)


class SynthesisInputs(BaseModel):
    story_bundle_ids: Optional[List[str]] = None
    topic_digest_ids: Optional[List[str]] = None
    topic_seed_id: Optional[str] = None


class QuorumInfo(BaseModel):
    required: int = Field(..., gt=0)
    received: int = Field(..., ge=0)
    reached_at: int = Field(..., ge=0)
    timed_out: bool
    selection_rule: Literal["deterministic"] = "deterministic"


class DivergenceMetrics(BaseModel):
    disagreement_score: float = Field(..., ge=0, le=1)
    source_dispersion: float = Field(..., ge=0, le=1)
    candidate_count: int = Field(..., ge=0)


class ProviderCount(BaseModel):
    provider_id: str = Field(..., min_length=1)
    count: int = Field(..., gt=0)


class Provenance(BaseModel):
    candidate_ids: List[str] = Field(default_factory=list)
    provider_mix: List[ProviderCount] = Field(default_factory=list)


class TopicSynthesisOutput(BaseModel):
    """每個完成的 epoch 最多一筆；產出後不可變"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: Literal["topic-synthesis-v2"] = TOPIC_SYNTHESIS_SCHEMA_VERSION
    synthesis_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    epoch: int = Field(..., ge=0)
    inputs: SynthesisInputs
    quorum: QuorumInfo
    facts_summary: str = Field(..., min_length=1)
    frames: List[Frame] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    divergence_metrics: DivergenceMetrics
    provenance: Provenance
    created_at: int = Field(..., ge=0)


# ── Results and hook payloads ──────────────────────────────────────


class EpochGuardStatus(BaseModel):
    resynthesis_threshold_met: bool
    debounce_met: bool
    daily_cap_met: bool


class EpochSchedulerResult(BaseModel):
    allowed: bool
    guards: EpochGuardStatus
    blocked_by: List[Literal["resynthesis_threshold", "debounce", "daily_cap"]] = Field(default_factory=list)


class ResynthesisCheckResult(BaseModel):
    triggered: bool
    eligibility: Optional[EpochSchedulerResult] = None
    digest: Optional[TopicDigest] = None


class AdmissionResult(BaseModel):
    """Candidate 收件結果；拒收是一般結果，不是例外"""
    ok: bool
    reason: Optional[str] = None
    status: Optional[Literal["gathering", "quorum_reached"]] = None


class CandidateRequest(BaseModel):
    """開啟收件窗時送給外部 candidate 產生者的請求"""
    topic_id: str = Field(..., min_length=1)
    epoch: int = Field(..., ge=0)
    prior_synthesis_id: Optional[str] = None
    story_bundle_ids: Optional[List[str]] = None
    topic_digest_ids: List[str] = Field(default_factory=list)


class AnalysisRequest(BaseModel):
    """不含任何認證資訊"""
    prompt: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)


class SynthesisCandidateRequest(BaseModel):
    story_id: str = Field(..., min_length=1)
    provider: SynthesisProvider
    request: AnalysisRequest


class TickReport(BaseModel):
    """單次 ingestion tick 的中繼資料"""
    tick_id: str
    started_at: int
    finished_at: Optional[int] = None
    status: Literal["running", "completed", "failed", "skipped"] = "running"
    config_hash: str = ""
    stats: dict = Field(default_factory=dict, description="抓取數、正規化數、bundle 數、寫入數")
    error: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "tick_id": "tick_20240205_140000_1a2b3c4d",
                "started_at": 1707141600000,
                "finished_at": 1707141603000,
                "status": "completed",
                "config_hash": "abc123",
                "stats": {
                    "fetched_count": 120,
                    "normalized_count": 98,
                    "bundle_count": 31,
                    "written_count": 31
                }
            }
        }
