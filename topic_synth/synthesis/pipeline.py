"""
Topic Synthesis Pipeline

把 ResynthesisOrchestrator、GathererRegistry 與 selector 串成可執行的流程:

    comment events → tracker → scheduler guard → digest → 開啟收件窗
    → 外部 candidates → quorum / 逾時 → TopicSynthesisOutput

每個 topic 的狀態互相隔離；同一 topic 的事件須由單一擁有者依序處理。
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from topic_synth.config import DigestConfig, SynthesisPipelineConfig
from topic_synth.models import (
    AdmissionResult,
    CandidateRequest,
    CommentEvent,
    SynthesisCandidate,
    TopicDigest,
    TopicSynthesisOutput,
)
from topic_synth.synthesis import gatherer
from topic_synth.synthesis.resynthesis import (
    CommentResolver,
    EpochMetaResolver,
    ResynthesisOrchestrator,
    coerce_epoch_meta,
)
from topic_synth.synthesis.selector import run_epoch
from topic_synth.utils.time import now_ms

logger = logging.getLogger(__name__)


class TopicSynthesisPipeline:
    """
    Synthesis producer pipeline

    Args:
        resolve_topic_epoch_meta: topic_id → TopicEpochMeta (或 None)
        resolve_verified_comments: (topic_id, window_start, window_end) → 驗證留言
        on_synthesis_produced: 每個完成的 epoch 最多呼叫一次
        on_candidates_requested: 收件窗開啟時呼叫，讓外部產生 candidates
        enabled: 功能旗標；False 時所有操作皆為 no-op / 拒收
        now: 目前時間 (epoch ms)
    """

    def __init__(
        self,
        resolve_topic_epoch_meta: EpochMetaResolver,
        resolve_verified_comments: CommentResolver,
        on_synthesis_produced: Optional[Callable[[TopicSynthesisOutput], None]] = None,
        on_candidates_requested: Optional[Callable[[CandidateRequest], None]] = None,
        enabled: bool = True,
        now: Callable[[], int] = now_ms,
        pipeline_config: Optional[SynthesisPipelineConfig] = None,
        digest_config: Optional[DigestConfig] = None
    ):
        self.enabled = enabled
        self.now = now
        self.config = pipeline_config or SynthesisPipelineConfig()
        self.resolve_topic_epoch_meta = resolve_topic_epoch_meta
        self.on_synthesis_produced = on_synthesis_produced
        self.on_candidates_requested = on_candidates_requested

        self.gatherers = gatherer.GathererRegistry()
        self._last_synthesis_ids: Dict[str, str] = {}

        self.orchestrator = ResynthesisOrchestrator(
            resolve_topic_epoch_meta=resolve_topic_epoch_meta,
            resolve_verified_comments=resolve_verified_comments,
            on_epoch_triggered=self._handle_epoch_triggered,
            enabled=enabled,
            now=now,
            pipeline_config=self.config,
            digest_config=digest_config,
        )

    def on_comment_event(self, event: Union[CommentEvent, Dict[str, Any]]) -> None:
        """
        處理留言事件

        收件窗開啟期間只累計，不重新評估，避免取代進行中的 epoch；
        收件窗關閉時會再評估一次。
        """
        if not self.enabled:
            return

        parsed = event if isinstance(event, CommentEvent) else CommentEvent.model_validate(event)
        self.orchestrator.on_comment(parsed)

        if self.gatherers.is_open(parsed.topic_id):
            return

        self.orchestrator.evaluate(parsed.topic_id)

    def add_candidate(
        self,
        topic_id: str,
        candidate: Union[SynthesisCandidate, Dict[str, Any]]
    ) -> AdmissionResult:
        """加入 candidate；達 quorum 時立即完成該 epoch"""
        if not self.enabled:
            return AdmissionResult(ok=False, reason="Pipeline disabled")

        state = self.gatherers.get(topic_id)
        if state is None:
            return AdmissionResult(ok=False, reason="No active gatherer for topic")

        result = gatherer.add_candidate(state, candidate)
        if not result.ok:
            logger.warning(f"Candidate rejected for topic {topic_id}: {result.reason}")
            return result

        if result.status == "quorum_reached":
            self._complete_gathering(topic_id)

        return result

    def check_timeouts(self, now: Optional[int] = None) -> List[TopicSynthesisOutput]:
        """
        關閉所有逾時的收件窗

        沒有任何 candidate 的收件窗直接關閉，不產生輸出。

        Returns:
            本次產生的 outputs
        """
        if not self.enabled:
            return []

        current_time = self.now() if now is None else now
        produced = []

        for topic_id, state in self.gatherers.items():
            if gatherer.check_gather_status(state, current_time) != "timed_out":
                continue

            output = self._complete_gathering(topic_id, current_time)
            if output is not None:
                produced.append(output)

        return produced

    def has_active_gatherer(self, topic_id: str) -> bool:
        return self.gatherers.is_open(topic_id)

    def get_comment_count(self, topic_id: str) -> int:
        return self.orchestrator.get_comment_count(topic_id)

    def get_unique_principal_count(self, topic_id: str) -> int:
        return self.orchestrator.get_unique_principal_count(topic_id)

    def _handle_epoch_triggered(self, topic_id: str, digest: TopicDigest) -> None:
        meta = coerce_epoch_meta(self.resolve_topic_epoch_meta(topic_id))
        if meta is None:
            logger.warning(f"Epoch meta disappeared for topic {topic_id}; gatherer not opened")
            return

        state = gatherer.create_gatherer_state(topic_id, meta.current_epoch + 1, self.now(), self.config)
        self.gatherers.open(state, digest)

        if self.on_candidates_requested is not None:
            self.on_candidates_requested(CandidateRequest(
                topic_id=topic_id,
                epoch=state.epoch,
                prior_synthesis_id=self._last_synthesis_ids.get(topic_id),
                topic_digest_ids=[digest.digest_id],
            ))

    def _complete_gathering(self, topic_id: str, now: Optional[int] = None) -> Optional[TopicSynthesisOutput]:
        state = self.gatherers.get(topic_id)
        if state is None:
            return None

        current_time = self.now() if now is None else now
        digest = self.gatherers.digest_for(topic_id)
        status = gatherer.check_gather_status(state, current_time)

        self.gatherers.close(topic_id)

        output = run_epoch(
            topic_id=topic_id,
            epoch=state.epoch,
            candidates=state.candidates,
            now=current_time,
            quorum_required=state.config.quorum_size,
            timed_out=status == "timed_out",
            digest=digest,
        )

        if output is None:
            logger.info(f"Topic {topic_id} epoch {state.epoch} closed without candidates")
        else:
            self._last_synthesis_ids[topic_id] = output.synthesis_id
            logger.info(f"Synthesis produced: {output.synthesis_id} " +
                        f"(received={output.quorum.received}, timed_out={output.quorum.timed_out})")

            if self.on_synthesis_produced is not None:
                self.on_synthesis_produced(output)

        # 收件窗期間累計的留言在關閉後補評估一次
        self.orchestrator.evaluate(topic_id)

        return output
