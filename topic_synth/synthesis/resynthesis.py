"""
Resynthesis Orchestrator

串接 CommentTracker → evaluate_epoch_eligibility → build_digest:
留言活動達門檻且通過 scheduler guard 時，建立 digest 並通知上層開啟新 epoch。
計數只在 epoch 成功開啟時才重置，被 guard 擋下的活動不會遺失。
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from topic_synth.config import DigestConfig, SynthesisPipelineConfig
from topic_synth.models import (
    CommentEvent,
    ResynthesisCheckResult,
    TopicDigest,
    TopicEpochMeta,
    VerifiedComment,
)
from topic_synth.synthesis.digest import DigestInput, build_digest
from topic_synth.synthesis.scheduler import EpochSchedulerInput, evaluate_epoch_eligibility
from topic_synth.synthesis.tracker import CommentTracker
from topic_synth.utils.time import now_ms

logger = logging.getLogger(__name__)

EpochMetaResolver = Callable[[str], Optional[Union[TopicEpochMeta, Dict[str, Any]]]]
CommentResolver = Callable[[str, int, int], List[Union[VerifiedComment, Dict[str, Any]]]]
EpochTriggeredHook = Callable[[str, TopicDigest], None]


def coerce_epoch_meta(meta: Optional[Union[TopicEpochMeta, Dict[str, Any]]]) -> Optional[TopicEpochMeta]:
    if meta is None or isinstance(meta, TopicEpochMeta):
        return meta
    return TopicEpochMeta.model_validate(meta)


class ResynthesisOrchestrator:
    """
    依 topic 判斷是否開啟新的 synthesis epoch

    Args:
        enabled: 功能旗標；False 時所有操作皆為 no-op
        resolve_topic_epoch_meta: topic_id → TopicEpochMeta (或 None)
        resolve_verified_comments: (topic_id, window_start, window_end) → 驗證留言
        on_epoch_triggered: epoch 開啟時呼叫 (topic_id, digest)
        now: 目前時間 (epoch ms)
    """

    def __init__(
        self,
        resolve_topic_epoch_meta: EpochMetaResolver,
        resolve_verified_comments: CommentResolver,
        on_epoch_triggered: Optional[EpochTriggeredHook] = None,
        enabled: bool = True,
        now: Callable[[], int] = now_ms,
        pipeline_config: Optional[SynthesisPipelineConfig] = None,
        digest_config: Optional[DigestConfig] = None
    ):
        self.enabled = enabled
        self.now = now
        self.resolve_topic_epoch_meta = resolve_topic_epoch_meta
        self.resolve_verified_comments = resolve_verified_comments
        self.on_epoch_triggered = on_epoch_triggered
        self.pipeline_config = pipeline_config or SynthesisPipelineConfig()
        self.digest_config = digest_config or DigestConfig()
        self.tracker = CommentTracker(self.pipeline_config)

    def on_comment(self, event: Union[CommentEvent, Dict[str, Any]]) -> None:
        if not self.enabled:
            return
        self.tracker.on_comment(event)

    def evaluate(self, topic_id: str) -> ResynthesisCheckResult:
        """
        檢查 topic 是否可重新 synthesis；可以則建立 digest 並觸發 callback

        Returns:
            ResynthesisCheckResult (未觸發時 digest 為 None)
        """
        not_triggered = ResynthesisCheckResult(triggered=False)

        if not self.enabled:
            return not_triggered

        if not self.tracker.should_trigger_resynthesis(topic_id):
            return not_triggered

        meta = coerce_epoch_meta(self.resolve_topic_epoch_meta(topic_id))
        if meta is None:
            logger.debug(f"No epoch meta for topic {topic_id}; skipping evaluation")
            return not_triggered

        comment_count = self.tracker.get_comment_count(topic_id)
        unique_principals = self.tracker.get_unique_principal_count(topic_id)
        current_time = self.now()

        eligibility = evaluate_epoch_eligibility(
            EpochSchedulerInput(
                topic_id=topic_id,
                current_epoch=meta.current_epoch,
                verified_comment_count_since_last=comment_count,
                unique_verified_principals_since_last=unique_principals,
                last_epoch_timestamp=meta.last_epoch_timestamp,
                epochs_today=meta.epochs_today,
                now=current_time,
            ),
            self.pipeline_config,
        )

        if not eligibility.allowed:
            logger.info(f"Topic {topic_id} epoch blocked by {', '.join(eligibility.blocked_by)}")
            return ResynthesisCheckResult(triggered=False, eligibility=eligibility)

        window_start = meta.last_epoch_timestamp or 0
        comments = self.resolve_verified_comments(topic_id, window_start, current_time)

        digest = build_digest(
            DigestInput(
                topic_id=topic_id,
                window_start=window_start,
                window_end=current_time,
                comments=comments,
                verified_comment_count=comment_count,
                unique_verified_principals=unique_principals,
            ),
            self.digest_config,
        )

        self.tracker.acknowledge_epoch(topic_id)
        logger.info(f"Topic {topic_id} resynthesis triggered: {comment_count} comments, " +
                    f"{unique_principals} principals, digest {digest.digest_id}")

        if self.on_epoch_triggered is not None:
            self.on_epoch_triggered(topic_id, digest)

        return ResynthesisCheckResult(triggered=True, eligibility=eligibility, digest=digest)

    def get_comment_count(self, topic_id: str) -> int:
        return self.tracker.get_comment_count(topic_id)

    def get_unique_principal_count(self, topic_id: str) -> int:
        return self.tracker.get_unique_principal_count(topic_id)
