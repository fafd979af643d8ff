"""
Tests for epoch scheduler guards
"""

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.synthesis.scheduler import EpochSchedulerInput, evaluate_epoch_eligibility

LAST_EPOCH = 1_000_000


def scheduler_input(**overrides) -> EpochSchedulerInput:
    """Helper: 預設為可通過所有 guard 的 epoch 1"""
    values = dict(
        topic_id="T",
        current_epoch=1,
        verified_comment_count_since_last=10,
        unique_verified_principals_since_last=3,
        last_epoch_timestamp=LAST_EPOCH,
        epochs_today=3,
        now=LAST_EPOCH + 1_800_000,
    )
    values.update(overrides)
    return EpochSchedulerInput(**values)


def test_all_guards_pass():
    result = evaluate_epoch_eligibility(scheduler_input())

    assert result.allowed
    assert result.blocked_by == []
    assert result.guards.resynthesis_threshold_met
    assert result.guards.debounce_met
    assert result.guards.daily_cap_met


def test_debounce_boundary():
    """測試 debounce 邊界: 1_800_000 通過，1_799_999 不通過"""
    assert evaluate_epoch_eligibility(scheduler_input(now=LAST_EPOCH + 1_800_000)).guards.debounce_met

    result = evaluate_epoch_eligibility(scheduler_input(now=LAST_EPOCH + 1_799_999))
    assert not result.allowed
    assert result.blocked_by == ["debounce"]


def test_daily_cap_boundary():
    """測試每日上限: epochs_today == 4 阻擋，== 3 允許"""
    assert evaluate_epoch_eligibility(scheduler_input(epochs_today=3)).allowed

    result = evaluate_epoch_eligibility(scheduler_input(epochs_today=4))
    assert not result.allowed
    assert result.blocked_by == ["daily_cap"]


def test_threshold_guard():
    result = evaluate_epoch_eligibility(scheduler_input(verified_comment_count_since_last=9))
    assert result.blocked_by == ["resynthesis_threshold"]

    result = evaluate_epoch_eligibility(scheduler_input(unique_verified_principals_since_last=2))
    assert result.blocked_by == ["resynthesis_threshold"]


def test_missing_last_epoch_timestamp_fails_debounce():
    result = evaluate_epoch_eligibility(scheduler_input(last_epoch_timestamp=None))

    assert not result.allowed
    assert result.blocked_by == ["debounce"]


def test_multiple_guards_reported_in_order():
    result = evaluate_epoch_eligibility(scheduler_input(
        verified_comment_count_since_last=0,
        now=LAST_EPOCH + 10,
        epochs_today=9,
    ))

    assert result.blocked_by == ["resynthesis_threshold", "debounce", "daily_cap"]


def test_initial_epoch_bypasses_threshold_and_debounce():
    """測試 epoch 0 略過門檻與 debounce，但仍受每日上限限制"""
    first = scheduler_input(
        current_epoch=0,
        verified_comment_count_since_last=0,
        unique_verified_principals_since_last=0,
        last_epoch_timestamp=None,
        epochs_today=0,
        now=5,
    )
    assert evaluate_epoch_eligibility(first).allowed

    capped = first.model_copy(update={"epochs_today": 4})
    result = evaluate_epoch_eligibility(capped)
    assert not result.allowed
    assert result.blocked_by == ["daily_cap"]


def test_custom_config():
    config = SynthesisPipelineConfig(epoch_debounce_ms=10, daily_epoch_cap_per_topic=1)

    assert evaluate_epoch_eligibility(scheduler_input(now=LAST_EPOCH + 10, epochs_today=0), config).allowed
    assert not evaluate_epoch_eligibility(scheduler_input(now=LAST_EPOCH + 10, epochs_today=1), config).allowed
