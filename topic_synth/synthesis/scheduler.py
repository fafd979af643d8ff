"""
Epoch Scheduler

純計算，不做 I/O。判斷 topic 是否可以開啟新的 synthesis epoch:
1. 重新 synthesis 活動門檻
2. debounce
3. 每日上限

Epoch 0 (首次 synthesis) 略過 1 與 2，但仍受每日上限限制。
"""

from typing import Optional

from pydantic import BaseModel, Field

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.models import EpochGuardStatus, EpochSchedulerResult


class EpochSchedulerInput(BaseModel):
    topic_id: str = Field(..., min_length=1)
    current_epoch: int = Field(..., ge=0)
    verified_comment_count_since_last: int = Field(..., ge=0)
    unique_verified_principals_since_last: int = Field(..., ge=0)
    last_epoch_timestamp: Optional[int] = Field(None, ge=0)
    epochs_today: int = Field(..., ge=0)
    now: int = Field(..., ge=0)


def evaluate_epoch_eligibility(
    scheduler_input: EpochSchedulerInput,
    config: Optional[SynthesisPipelineConfig] = None
) -> EpochSchedulerResult:
    """
    評估 topic 是否可開啟新 epoch

    Args:
        scheduler_input: 目前 epoch 與活動計數
        config: 門檻設定

    Returns:
        EpochSchedulerResult (blocked_by 列出所有未通過的 guard)
    """
    config = config or SynthesisPipelineConfig()
    data = scheduler_input
    is_initial_epoch = data.current_epoch == 0

    if is_initial_epoch:
        threshold_met = True
        debounce_met = True
    else:
        threshold_met = (
            data.verified_comment_count_since_last >= config.resynthesis_comment_threshold
            and data.unique_verified_principals_since_last >= config.resynthesis_unique_principal_min
        )
        debounce_met = (
            data.last_epoch_timestamp is not None
            and data.now - data.last_epoch_timestamp >= config.epoch_debounce_ms
        )

    daily_cap_met = data.epochs_today < config.daily_epoch_cap_per_topic

    blocked_by = []
    if not threshold_met:
        blocked_by.append("resynthesis_threshold")
    if not debounce_met:
        blocked_by.append("debounce")
    if not daily_cap_met:
        blocked_by.append("daily_cap")

    return EpochSchedulerResult(
        allowed=not blocked_by,
        guards=EpochGuardStatus(
            resynthesis_threshold_met=threshold_met,
            debounce_met=debounce_met,
            daily_cap_met=daily_cap_met,
        ),
        blocked_by=blocked_by,
    )
