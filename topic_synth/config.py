"""
Configuration schemas using Pydantic

定義完整的配置結構，包含 feed 來源、topic mapping、聚類、synthesis 門檻與 runtime 設定。
"""

import math
import os
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from topic_synth.utils.time import HOUR_MS

DEFAULT_POLL_INTERVAL_MS = 30 * 60 * 1000
RUNTIME_ENABLED_ENV = "TOPIC_SYNTH_NEWS_RUNTIME_ENABLED"
DISABLED_FLAG_VALUES = {"0", "false", "off", "no"}


class ConfigurationError(ValueError):
    """設定錯誤 (建構時即失敗，或於 tick 中回報)"""


class TopicMapping(BaseModel):
    """來源 → topic 對應"""
    default_topic_id: str = Field(..., min_length=1, description="未對應來源的預設 topic")
    source_topics: Dict[str, str] = Field(default_factory=dict, description="source_id → topic_id")

    def topic_for(self, source_id: str) -> str:
        return self.source_topics.get(source_id) or self.default_topic_id


class NormalizeConfig(BaseModel):
    near_duplicate_window_ms: int = Field(default=HOUR_MS, gt=0, description="近似重複判定時間窗")


class ClusterConfig(BaseModel):
    bucket_ms: int = Field(default=HOUR_MS, gt=0, description="聚類時間桶")
    min_entity_overlap: int = Field(default=1, ge=1, description="最少共享 entity key 數")


class SynthesisPipelineConfig(BaseModel):
    """Synthesis 門檻設定 (tracker 與 scheduler 共用)"""
    quorum_size: int = Field(default=5, gt=0, description="提前結束收件的最少 candidate 數")
    candidate_timeout_ms: int = Field(default=86_400_000, gt=0, description="收件窗逾時")
    epoch_debounce_ms: int = Field(default=1_800_000, gt=0, description="相鄰 epoch 最小間隔")
    daily_epoch_cap_per_topic: int = Field(default=4, gt=0, description="每 topic 每日 epoch 上限")
    resynthesis_comment_threshold: int = Field(default=10, gt=0, description="觸發重新 synthesis 的留言數")
    resynthesis_unique_principal_min: int = Field(default=3, gt=0, description="觸發所需的最少相異參與者")
    selection_rule: Literal["deterministic"] = Field(default="deterministic")


class DigestConfig(BaseModel):
    max_claims: int = Field(default=10, gt=0)
    max_counterclaims: int = Field(default=5, gt=0)
    max_quotes: int = Field(default=5, gt=0)
    max_quote_length: int = Field(default=280, gt=1)


class RuntimeConfig(BaseModel):
    """Ingestion runtime 設定"""
    enabled: Optional[Union[bool, str]] = Field(None, description="None 時讀取環境變數")
    poll_interval_ms: Optional[float] = Field(None, description="輪詢間隔 (毫秒)")
    run_on_start: bool = Field(default=True, description="啟動時立即執行一次")
    analysis_model: str = Field(default="default", min_length=1, description="candidate 請求的模型 ID")
    fetch_timeout_s: float = Field(default=20.0, gt=0, description="feed 抓取逾時 (秒)")


class StorageConfig(BaseModel):
    base_dir: str = Field(default="memory", description="檔案儲存根目錄")


class TopicSynthConfig(BaseModel):
    """完整設定 schema"""
    run_timezone: str = Field(default="UTC", description="naive 時間的解讀時區")

    # Feeds (逐筆驗證，不合法者於 ingestion 時略過)
    feed_sources: List[Dict[str, Any]] = Field(default_factory=list, description="Feed 來源清單")
    topic_mapping: TopicMapping = Field(default_factory=lambda: TopicMapping(default_topic_id="topic-general"))

    normalize: NormalizeConfig = Field(default_factory=NormalizeConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    synthesis: SynthesisPipelineConfig = Field(default_factory=SynthesisPipelineConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "TopicSynthConfig":
        """從 YAML 檔案載入設定"""
        import yaml
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)


def is_truthy_flag(value: Optional[Union[bool, str]]) -> bool:
    """
    環境變數風格的旗標

    空值為 False；"0"/"false"/"off"/"no" 為 False；其餘皆為 True。
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False

    normalized = str(value).strip().lower()
    if not normalized:
        return False
    return normalized not in DISABLED_FLAG_VALUES


def resolve_runtime_enabled(value: Optional[Union[bool, str]] = None) -> bool:
    """明確設定優先，否則讀取 TOPIC_SYNTH_NEWS_RUNTIME_ENABLED"""
    if value is None:
        value = os.environ.get(RUNTIME_ENABLED_ENV)
    return is_truthy_flag(value)


def normalize_poll_interval(interval_ms: Optional[float]) -> int:
    """
    驗證輪詢間隔

    Args:
        interval_ms: 毫秒；None 使用預設 30 分鐘

    Returns:
        正整數毫秒

    Raises:
        ConfigurationError: 非正數或非有限值
    """
    if interval_ms is None:
        return DEFAULT_POLL_INTERVAL_MS

    if isinstance(interval_ms, bool) or not isinstance(interval_ms, (int, float)):
        raise ConfigurationError(f"poll_interval_ms must be a number, got {interval_ms!r}")
    if not math.isfinite(interval_ms) or interval_ms <= 0:
        raise ConfigurationError("poll_interval_ms must be a positive finite number")

    # 0 < x < 1 floor 後會變成 0
    return max(1, int(math.floor(interval_ms)))
