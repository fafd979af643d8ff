"""
Comment Activity Tracker

每個 topic 追蹤「自上次 epoch 以來」的驗證留言數與相異參與者。
只負責門檻判斷；debounce 與每日上限由 scheduler 處理。

Privacy: 只保存 hashed principal，不保存原始身分。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.models import CommentEvent

logger = logging.getLogger(__name__)


@dataclass
class TopicActivity:
    """單一 topic 的計數狀態"""
    # comment_id → 新增該留言時的 principal_hash
    comments: Dict[str, str] = field(default_factory=dict)
    # principal_hash → 尚未撤回的留言數
    principal_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def comment_count(self) -> int:
        return len(self.comments)

    @property
    def unique_principals(self) -> int:
        return sum(1 for count in self.principal_counts.values() if count > 0)


class CommentTracker:
    """
    由 add/retract 事件流維護每個 topic 的計數

    - 未驗證的 add 忽略
    - 重複 comment_id 的 add 為 no-op (可重播)
    - 未知 comment_id 的 retract 為 no-op
    - retract 即使 verified=False 仍會處理 (取消驗證)
    """

    def __init__(self, config: Optional[SynthesisPipelineConfig] = None):
        self.config = config or SynthesisPipelineConfig()
        self._topics: Dict[str, TopicActivity] = {}

    def on_comment(self, event: Union[CommentEvent, Dict[str, Any]]) -> None:
        """處理一筆留言事件；格式錯誤會拋出 ValidationError"""
        parsed = event if isinstance(event, CommentEvent) else CommentEvent.model_validate(event)

        if parsed.kind == "add" and not parsed.verified:
            return

        if parsed.kind == "add":
            self._handle_add(parsed)
        else:
            self._handle_retract(parsed)

    def should_trigger_resynthesis(self, topic_id: str) -> bool:
        """留言數 ≥ threshold 且相異參與者 ≥ min_unique (皆含邊界)"""
        state = self._topics.get(topic_id)
        if state is None:
            return False

        return (
            state.comment_count >= self.config.resynthesis_comment_threshold
            and state.unique_principals >= self.config.resynthesis_unique_principal_min
        )

    def get_comment_count(self, topic_id: str) -> int:
        state = self._topics.get(topic_id)
        return state.comment_count if state else 0

    def get_unique_principal_count(self, topic_id: str) -> int:
        state = self._topics.get(topic_id)
        return state.unique_principals if state else 0

    def acknowledge_epoch(self, topic_id: str) -> None:
        """epoch 成功開啟後重置該 topic 的計數"""
        self._topics.pop(topic_id, None)
        logger.debug(f"Tracker counters reset for topic {topic_id}")

    def _handle_add(self, event: CommentEvent) -> None:
        state = self._topics.setdefault(event.topic_id, TopicActivity())
        if event.comment_id in state.comments:
            return

        state.comments[event.comment_id] = event.principal_hash
        state.principal_counts[event.principal_hash] = state.principal_counts.get(event.principal_hash, 0) + 1

    def _handle_retract(self, event: CommentEvent) -> None:
        state = self._topics.get(event.topic_id)
        if state is None or event.comment_id not in state.comments:
            return

        principal = state.comments.pop(event.comment_id)
        remaining = state.principal_counts.get(principal, 0) - 1
        if remaining <= 0:
            state.principal_counts.pop(principal, None)
        else:
            state.principal_counts[principal] = remaining
