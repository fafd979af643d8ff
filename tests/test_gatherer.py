"""
Tests for candidate gathering
"""

import pytest

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.models import SynthesisCandidate
from topic_synth.synthesis.gatherer import (
    GathererRegistry,
    add_candidate,
    check_gather_status,
    create_gatherer_state,
)

OPENED_AT = 5_000


def create_candidate(candidate_id, topic_id="T", epoch=1, provider_id="p1", hints=None) -> SynthesisCandidate:
    """Helper to create synthesis candidate"""
    return SynthesisCandidate(
        candidate_id=candidate_id,
        topic_id=topic_id,
        epoch=epoch,
        facts_summary=f"Facts from {candidate_id}",
        frames=[{"frame": "Cost", "reframe": "Investment"}],
        divergence_hints=hints or [],
        provider={"provider_id": provider_id, "model_id": "m1", "kind": "remote"},
        created_at=OPENED_AT,
    )


def create_state(quorum_size=3, timeout_ms=1_000):
    config = SynthesisPipelineConfig(quorum_size=quorum_size, candidate_timeout_ms=timeout_ms)
    return create_gatherer_state("T", 1, OPENED_AT, config)


def test_add_until_quorum():
    state = create_state(quorum_size=2)

    first = add_candidate(state, create_candidate("c1"))
    second = add_candidate(state, create_candidate("c2"))

    assert first.ok and first.status == "gathering"
    assert second.ok and second.status == "quorum_reached"
    assert state.candidate_ids == ["c1", "c2"]


def test_reject_topic_and_epoch_mismatch():
    state = create_state()

    wrong_topic = add_candidate(state, create_candidate("c1", topic_id="U"))
    wrong_epoch = add_candidate(state, create_candidate("c2", epoch=2))

    assert not wrong_topic.ok and "Topic mismatch" in wrong_topic.reason
    assert not wrong_epoch.ok and "Epoch mismatch" in wrong_epoch.reason
    assert state.candidates == []


def test_reject_duplicate_candidate_id():
    state = create_state()
    add_candidate(state, create_candidate("c1"))

    result = add_candidate(state, create_candidate("c1", provider_id="p2"))

    assert not result.ok
    assert "Duplicate" in result.reason
    assert len(state.candidates) == 1


def test_reject_malformed_candidate():
    """測試格式錯誤的 candidate 回傳拒收結果而非拋出例外"""
    state = create_state()

    result = add_candidate(state, {"candidate_id": "c1", "topic_id": "T"})

    assert not result.ok
    assert "Invalid candidate" in result.reason


def test_check_gather_status():
    state = create_state(quorum_size=2, timeout_ms=1_000)

    assert check_gather_status(state, OPENED_AT + 999) == "gathering"
    assert check_gather_status(state, OPENED_AT + 1_000) == "timed_out"

    add_candidate(state, create_candidate("c1"))
    add_candidate(state, create_candidate("c2"))
    # quorum 優先於逾時
    assert check_gather_status(state, OPENED_AT + 5_000) == "quorum_reached"


def test_create_state_validation():
    with pytest.raises(ValueError):
        create_gatherer_state("", 1, OPENED_AT)
    with pytest.raises(ValueError):
        create_gatherer_state("T", -1, OPENED_AT)


def test_registry_lifecycle():
    registry = GathererRegistry()
    state = create_state()

    registry.open(state)

    assert registry.is_open("T")
    assert registry.get("T") is state
    assert registry.digest_for("T") is None
    assert len(registry) == 1

    with pytest.raises(ValueError):
        registry.open(create_state())

    assert registry.close("T") is state
    assert not registry.is_open("T")
    assert registry.close("T") is None
    assert registry.get("T") is None
