"""
Tests for configuration loading and runtime flags
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from topic_synth.config import (
    DEFAULT_POLL_INTERVAL_MS,
    RUNTIME_ENABLED_ENV,
    ConfigurationError,
    SynthesisPipelineConfig,
    TopicMapping,
    TopicSynthConfig,
    is_truthy_flag,
    normalize_poll_interval,
    resolve_runtime_enabled,
)

EXAMPLE_CONFIG = Path(__file__).parent.parent / "config.example.yaml"


def test_defaults():
    cfg = TopicSynthConfig()

    assert cfg.synthesis.quorum_size == 5
    assert cfg.synthesis.candidate_timeout_ms == 86_400_000
    assert cfg.synthesis.epoch_debounce_ms == 1_800_000
    assert cfg.synthesis.daily_epoch_cap_per_topic == 4
    assert cfg.synthesis.resynthesis_comment_threshold == 10
    assert cfg.synthesis.resynthesis_unique_principal_min == 3
    assert cfg.digest.max_quote_length == 280
    assert cfg.normalize.near_duplicate_window_ms == 3_600_000
    assert cfg.cluster.bucket_ms == 3_600_000
    assert cfg.runtime.run_on_start is True


def test_from_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "run_timezone: Asia/Taipei\n"
        "topic_mapping:\n"
        "  default_topic_id: topic-a\n"
        "  source_topics:\n"
        "    tech: topic-tech\n"
        "synthesis:\n"
        "  quorum_size: 2\n",
        encoding="utf-8",
    )

    cfg = TopicSynthConfig.from_yaml(str(config_path))

    assert cfg.run_timezone == "Asia/Taipei"
    assert cfg.synthesis.quorum_size == 2
    assert cfg.synthesis.daily_epoch_cap_per_topic == 4
    assert cfg.topic_mapping.topic_for("tech") == "topic-tech"
    assert cfg.topic_mapping.topic_for("other") == "topic-a"


def test_example_config_loads():
    cfg = TopicSynthConfig.from_yaml(str(EXAMPLE_CONFIG))

    assert len(cfg.feed_sources) == 3
    assert cfg.runtime.poll_interval_ms == 1_800_000


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        SynthesisPipelineConfig(quorum_size=0)
    with pytest.raises(ValidationError):
        TopicMapping(default_topic_id="")


@pytest.mark.parametrize("value,expected", [
    (True, True),
    (False, False),
    (None, False),
    ("", False),
    ("  ", False),
    ("0", False),
    ("FALSE", False),
    ("off", False),
    ("No", False),
    ("1", True),
    ("enabled", True),
])
def test_is_truthy_flag(value, expected):
    assert is_truthy_flag(value) is expected


def test_resolve_runtime_enabled(monkeypatch):
    monkeypatch.setenv(RUNTIME_ENABLED_ENV, "true")
    assert resolve_runtime_enabled() is True
    # 明確設定優先
    assert resolve_runtime_enabled(False) is False

    monkeypatch.delenv(RUNTIME_ENABLED_ENV)
    assert resolve_runtime_enabled() is False


def test_normalize_poll_interval():
    assert normalize_poll_interval(None) == DEFAULT_POLL_INTERVAL_MS
    assert normalize_poll_interval(2_000) == 2_000
    assert normalize_poll_interval(99.9) == 99

    for bad in (0, -1, float("inf"), "100", True):
        with pytest.raises(ConfigurationError):
            normalize_poll_interval(bad)
