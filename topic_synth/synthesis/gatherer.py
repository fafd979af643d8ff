"""
Candidate Gatherer

每個 topic 一個收件窗 (state machine):
    無 → open (epoch 觸發時建立) → closed (達 quorum 或逾時，自 registry 移除)

拒收是一般結果 (AdmissionResult.ok=False)，不會拋出例外；
逾時後才送達的 candidate 會因為沒有開啟中的收件窗而被丟棄。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import ValidationError

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.models import AdmissionResult, SynthesisCandidate, TopicDigest

logger = logging.getLogger(__name__)

GatherStatus = Literal["gathering", "quorum_reached", "timed_out"]


@dataclass
class GathererState:
    topic_id: str
    epoch: int
    opened_at: int
    config: SynthesisPipelineConfig
    candidates: List[SynthesisCandidate] = field(default_factory=list)

    @property
    def candidate_ids(self) -> List[str]:
        return [candidate.candidate_id for candidate in self.candidates]


def create_gatherer_state(
    topic_id: str,
    epoch: int,
    opened_at: int,
    config: Optional[SynthesisPipelineConfig] = None
) -> GathererState:
    if not topic_id:
        raise ValueError("topic_id must be non-empty")
    if epoch < 0:
        raise ValueError(f"epoch must be non-negative: {epoch}")

    return GathererState(
        topic_id=topic_id,
        epoch=epoch,
        opened_at=opened_at,
        config=config or SynthesisPipelineConfig(),
    )


def check_gather_status(state: GathererState, now: int) -> GatherStatus:
    """quorum 優先於逾時判斷"""
    if len(state.candidates) >= state.config.quorum_size:
        return "quorum_reached"
    if now - state.opened_at >= state.config.candidate_timeout_ms:
        return "timed_out"
    return "gathering"


def add_candidate(
    state: GathererState,
    candidate: Union[SynthesisCandidate, Dict[str, Any]]
) -> AdmissionResult:
    """
    驗證並加入 candidate

    拒收原因: 格式錯誤、topic/epoch 不符、同一收件窗內 candidate_id 重複、收件窗已滿。
    """
    if isinstance(candidate, SynthesisCandidate):
        parsed = candidate
    else:
        try:
            parsed = SynthesisCandidate.model_validate(candidate)
        except ValidationError as e:
            return AdmissionResult(ok=False, reason=f"Invalid candidate: {e.error_count()} validation error(s)")

    if parsed.topic_id != state.topic_id:
        return AdmissionResult(
            ok=False,
            reason=f"Topic mismatch: expected {state.topic_id}, got {parsed.topic_id}"
        )

    if parsed.epoch != state.epoch:
        return AdmissionResult(
            ok=False,
            reason=f"Epoch mismatch: expected {state.epoch}, got {parsed.epoch}"
        )

    if parsed.candidate_id in state.candidate_ids:
        return AdmissionResult(ok=False, reason=f"Duplicate candidate: {parsed.candidate_id}")

    if len(state.candidates) >= state.config.quorum_size:
        return AdmissionResult(ok=False, reason="Quorum already reached")

    state.candidates.append(parsed)

    status = "quorum_reached" if len(state.candidates) >= state.config.quorum_size else "gathering"
    return AdmissionResult(ok=True, status=status)


class GathererRegistry:
    """topic_id → (GathererState, 開啟該收件窗的 digest)"""

    def __init__(self):
        self._entries: Dict[str, Tuple[GathererState, Optional[TopicDigest]]] = {}

    def open(self, state: GathererState, digest: Optional[TopicDigest] = None) -> GathererState:
        if state.topic_id in self._entries:
            raise ValueError(f"Gatherer already open for topic {state.topic_id}")

        self._entries[state.topic_id] = (state, digest)
        logger.info(f"Gatherer opened: topic={state.topic_id} epoch={state.epoch}")
        return state

    def get(self, topic_id: str) -> Optional[GathererState]:
        entry = self._entries.get(topic_id)
        return entry[0] if entry else None

    def digest_for(self, topic_id: str) -> Optional[TopicDigest]:
        entry = self._entries.get(topic_id)
        return entry[1] if entry else None

    def close(self, topic_id: str) -> Optional[GathererState]:
        entry = self._entries.pop(topic_id, None)
        if entry is None:
            return None

        logger.info(f"Gatherer closed: topic={topic_id} epoch={entry[0].epoch} " +
                    f"candidates={len(entry[0].candidates)}")
        return entry[0]

    def is_open(self, topic_id: str) -> bool:
        return topic_id in self._entries

    def items(self) -> Iterator[Tuple[str, GathererState]]:
        # 複本，允許迭代期間 close
        return iter([(topic_id, entry[0]) for topic_id, entry in self._entries.items()])

    def __len__(self) -> int:
        return len(self._entries)
