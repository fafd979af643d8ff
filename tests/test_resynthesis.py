"""
Tests for the resynthesis orchestrator
"""

from topic_synth.config import SynthesisPipelineConfig
from topic_synth.models import TopicEpochMeta
from topic_synth.synthesis.resynthesis import ResynthesisOrchestrator

NOW = 10_000_000


def comment_event(comment_id, principal, topic_id="T"):
    return {
        "comment_id": comment_id,
        "topic_id": topic_id,
        "principal_hash": principal,
        "verified": True,
        "kind": "add",
        "timestamp": NOW - 1_000,
    }


class Recorder:
    """記錄 callback 呼叫"""

    def __init__(self, meta=None):
        self.meta = meta
        self.triggered = []
        self.comment_requests = []

    def resolve_meta(self, topic_id):
        return self.meta

    def resolve_comments(self, topic_id, window_start, window_end):
        self.comment_requests.append((topic_id, window_start, window_end))
        return [{
            "comment_id": "c0",
            "content": "Support the plan",
            "stance": "concur",
            "principal_hash": "u0",
            "timestamp": NOW - 1_000,
        }]

    def on_epoch_triggered(self, topic_id, digest):
        self.triggered.append((topic_id, digest))


def create_orchestrator(recorder, enabled=True):
    return ResynthesisOrchestrator(
        resolve_topic_epoch_meta=recorder.resolve_meta,
        resolve_verified_comments=recorder.resolve_comments,
        on_epoch_triggered=recorder.on_epoch_triggered,
        enabled=enabled,
        now=lambda: NOW,
    )


def feed(orchestrator, count=10, principals=("u0", "u1", "u2"), topic_id="T"):
    for i in range(count):
        orchestrator.on_comment(comment_event(f"c{i}", principals[i % len(principals)], topic_id))


def test_trigger_builds_digest_and_resets():
    recorder = Recorder(TopicEpochMeta(current_epoch=2, last_epoch_timestamp=1_000_000, epochs_today=1))
    orchestrator = create_orchestrator(recorder)
    feed(orchestrator)

    result = orchestrator.evaluate("T")

    assert result.triggered
    assert result.eligibility.allowed
    assert result.digest.window_start == 1_000_000
    assert result.digest.window_end == NOW
    assert result.digest.verified_comment_count == 10
    assert result.digest.unique_verified_principals == 3
    assert recorder.comment_requests == [("T", 1_000_000, NOW)]
    assert recorder.triggered == [("T", result.digest)]
    assert orchestrator.get_comment_count("T") == 0


def test_below_threshold_is_noop():
    recorder = Recorder(TopicEpochMeta(current_epoch=2, last_epoch_timestamp=1_000_000, epochs_today=1))
    orchestrator = create_orchestrator(recorder)
    feed(orchestrator, count=9)

    result = orchestrator.evaluate("T")

    assert not result.triggered
    assert result.eligibility is None
    assert recorder.comment_requests == []


def test_blocked_guard_preserves_counters():
    """測試被 guard 擋下時計數保留，不呼叫 comment provider"""
    recorder = Recorder(TopicEpochMeta(current_epoch=2, last_epoch_timestamp=NOW - 60_000, epochs_today=1))
    orchestrator = create_orchestrator(recorder)
    feed(orchestrator)

    result = orchestrator.evaluate("T")

    assert not result.triggered
    assert result.eligibility.blocked_by == ["debounce"]
    assert result.digest is None
    assert recorder.comment_requests == []
    assert recorder.triggered == []
    assert orchestrator.get_comment_count("T") == 10
    assert orchestrator.get_unique_principal_count("T") == 3


def test_missing_meta_is_noop():
    recorder = Recorder(None)
    orchestrator = create_orchestrator(recorder)
    feed(orchestrator)

    result = orchestrator.evaluate("T")

    assert not result.triggered
    assert orchestrator.get_comment_count("T") == 10


def test_initial_epoch_window_starts_at_zero():
    recorder = Recorder({"current_epoch": 0, "epochs_today": 0})
    orchestrator = create_orchestrator(recorder)
    feed(orchestrator)

    result = orchestrator.evaluate("T")

    assert result.triggered
    assert result.digest.window_start == 0


def test_disabled_orchestrator():
    recorder = Recorder(TopicEpochMeta(current_epoch=0, epochs_today=0))
    orchestrator = create_orchestrator(recorder, enabled=False)
    feed(orchestrator)

    result = orchestrator.evaluate("T")

    assert not result.triggered
    assert orchestrator.get_comment_count("T") == 0


def test_thresholds_from_pipeline_config():
    recorder = Recorder(TopicEpochMeta(current_epoch=0, epochs_today=0))
    orchestrator = ResynthesisOrchestrator(
        resolve_topic_epoch_meta=recorder.resolve_meta,
        resolve_verified_comments=recorder.resolve_comments,
        now=lambda: NOW,
        pipeline_config=SynthesisPipelineConfig(resynthesis_comment_threshold=2, resynthesis_unique_principal_min=1),
    )
    feed(orchestrator, count=2, principals=("u0",))

    assert orchestrator.evaluate("T").triggered
