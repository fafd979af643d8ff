"""
Tests for file-based storage
"""

from topic_synth.models import StoryBundle, TickReport, TopicSynthesisOutput
from topic_synth.storage.file_store import FileStore, write_story_bundle


def create_bundle(story_id="story-0000abcd", topic_id="topic-world") -> StoryBundle:
    """Helper to create story bundle"""
    return StoryBundle(
        story_id=story_id,
        topic_id=topic_id,
        headline="Senate passes budget",
        window_start=1_707_134_400_000,
        window_end=1_707_138_000_000,
        sources=[{
            "source_id": "wire",
            "publisher": "wire",
            "url": "https://wire.example/budget",
            "url_hash": "1a2b3c4d",
            "published_at": 1_707_134_460_000,
            "title": "Senate passes budget",
        }],
        cluster_features={
            "entity_keys": ["budget", "senate"],
            "time_bucket": "2024-02-05T12",
            "semantic_signature": "deadbeef",
        },
        provenance_hash="cafebabe",
        created_at=1_707_200_000_000,
    )


def create_output() -> TopicSynthesisOutput:
    return TopicSynthesisOutput(
        synthesis_id="synth-T-1-c1",
        topic_id="T",
        epoch=1,
        inputs={"topic_digest_ids": ["dg-00000001"]},
        quorum={"required": 2, "received": 2, "reached_at": 10, "timed_out": False},
        facts_summary="Facts",
        frames=[{"frame": "Cost", "reframe": "Investment"}],
        divergence_metrics={"disagreement_score": 0, "source_dispersion": 1, "candidate_count": 2},
        provenance={"candidate_ids": ["c1", "c2"], "provider_mix": [{"provider_id": "p1", "count": 2}]},
        created_at=10,
    )


def test_bundle_roundtrip(tmp_path):
    store = FileStore(str(tmp_path))
    bundle = create_bundle()

    path = write_story_bundle(store, bundle)

    assert path == tmp_path / "bundles" / "topic-world" / "story-0000abcd.json"
    assert store.read_bundles("topic-world") == [bundle]
    assert store.read_bundles("topic-missing") == []


def test_bundle_overwrite_by_story_id(tmp_path):
    store = FileStore(str(tmp_path))

    store.save_bundle(create_bundle())
    store.save_bundle(create_bundle())
    store.save_bundle(create_bundle(story_id="story-0000ffff"))

    assert [bundle.story_id for bundle in store.read_bundles("topic-world")] == ["story-0000abcd", "story-0000ffff"]


def test_synthesis_roundtrip(tmp_path):
    store = FileStore(str(tmp_path))
    output = create_output()

    store.save_synthesis(output)

    assert (tmp_path / "syntheses" / "T" / "1.json").exists()
    assert store.read_synthesis("T", 1) == output
    assert store.read_synthesis("T", 2) is None


def test_tick_roundtrip(tmp_path):
    store = FileStore(str(tmp_path))
    report = TickReport(tick_id="tick_1", started_at=1, finished_at=2, status="completed", stats={"bundle_count": 0})

    store.save_tick(report)

    assert store.read_tick("tick_1") == report
    assert store.read_tick("tick_missing") is None
