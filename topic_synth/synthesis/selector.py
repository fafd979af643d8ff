"""
Synthesis Selector

確定性選擇: candidate_id 字典序最小者勝出，與到達順序無關。
任何觀察者對同一組 candidates 計算都會得到相同結果。
"""

from collections import Counter
from typing import List, Optional, Sequence

from topic_synth.models import (
    DivergenceMetrics,
    Provenance,
    ProviderCount,
    QuorumInfo,
    SynthesisCandidate,
    SynthesisInputs,
    TopicDigest,
    TopicSynthesisOutput,
)

METRIC_PRECISION = 3


def select_candidate(candidates: Sequence[SynthesisCandidate]) -> Optional[SynthesisCandidate]:
    if not candidates:
        return None
    return min(candidates, key=lambda candidate: candidate.candidate_id)


def derive_synthesis_id(topic_id: str, epoch: int, candidate_id: str) -> str:
    return f"synth-{topic_id}-{epoch}-{candidate_id}"


def compute_divergence_metrics(candidates: Sequence[SynthesisCandidate]) -> DivergenceMetrics:
    """
    - source_dispersion: 相異 provider 數 / candidate 數
    - disagreement_score: 帶有 divergence_hints 的 candidate 比例

    candidate ≤ 1 時兩者皆為 0。
    """
    count = len(candidates)
    if count <= 1:
        return DivergenceMetrics(disagreement_score=0.0, source_dispersion=0.0, candidate_count=count)

    providers = {candidate.provider.provider_id for candidate in candidates}
    with_hints = sum(1 for candidate in candidates if candidate.divergence_hints)

    return DivergenceMetrics(
        disagreement_score=round(with_hints / count, METRIC_PRECISION),
        source_dispersion=round(len(providers) / count, METRIC_PRECISION),
        candidate_count=count,
    )


def compute_provider_mix(candidates: Sequence[SynthesisCandidate]) -> List[ProviderCount]:
    counts = Counter(candidate.provider.provider_id for candidate in candidates)
    return [
        ProviderCount(provider_id=provider_id, count=count)
        for provider_id, count in sorted(counts.items())
    ]


def run_epoch(
    topic_id: str,
    epoch: int,
    candidates: Sequence[SynthesisCandidate],
    now: int,
    quorum_required: int,
    timed_out: bool,
    digest: Optional[TopicDigest] = None
) -> Optional[TopicSynthesisOutput]:
    """
    由收件窗內的 candidates 產生最終 TopicSynthesisOutput

    Args:
        topic_id: Topic ID
        epoch: 收件窗的 epoch
        candidates: 依到達順序的 candidates
        now: 完成時間 (epoch ms)
        quorum_required: quorum 大小
        timed_out: 是否因逾時結束
        digest: 開啟收件窗的 digest

    Returns:
        TopicSynthesisOutput；沒有 candidate 時回傳 None
    """
    selected = select_candidate(candidates)
    if selected is None:
        return None

    return TopicSynthesisOutput(
        synthesis_id=derive_synthesis_id(topic_id, epoch, selected.candidate_id),
        topic_id=topic_id,
        epoch=epoch,
        inputs=SynthesisInputs(topic_digest_ids=[digest.digest_id] if digest else None),
        quorum=QuorumInfo(
            required=quorum_required,
            received=len(candidates),
            reached_at=now,
            timed_out=timed_out,
        ),
        facts_summary=selected.facts_summary,
        frames=list(selected.frames),
        warnings=list(selected.warnings),
        divergence_metrics=compute_divergence_metrics(candidates),
        provenance=Provenance(
            candidate_ids=[candidate.candidate_id for candidate in candidates],
            provider_mix=compute_provider_mix(candidates),
        ),
        created_at=now,
    )
