"""
Story Clustering

將同一 topic 的 NormalizedItems 依「時間桶 + entity key 重疊」貪婪分群，
產生 content-addressed StoryBundle。story_id 與 provenance_hash 只取決於
cluster 內容，與 item 到達順序無關。

每個 bundle 另可取得 BundleVerification 可信度紀錄。
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from topic_synth.models import (
    BundleVerification,
    ClusterFeatures,
    NormalizedItem,
    StoryBundle,
    StoryBundleSource,
)
from topic_synth.processing.dedupe import MIN_ENTITY_KEY_LENGTH, normalize_title
from topic_synth.utils import hashing
from topic_synth.utils.time import HOUR_MS, bucket_start, get_hourly_bucket_label, now_ms

logger = logging.getLogger(__name__)

FALLBACK_ENTITY_KEY = "general"


@dataclass
class _Cluster:
    bucket_start: int
    bucket_end: int
    items: List[NormalizedItem] = field(default_factory=list)
    entity_set: Set[str] = field(default_factory=set)


def fallback_entity_from_title(title: str) -> str:
    """無 entity key 時，以標題第一個 ≥4 字元的 token 代替，否則 'general'"""
    for token in normalize_title(title).split():
        if len(token) >= MIN_ENTITY_KEY_LENGTH:
            return token
    return FALLBACK_ENTITY_KEY


def entity_keys_for_item(item: NormalizedItem) -> List[str]:
    if item.entity_keys:
        return item.entity_keys
    return [fallback_entity_from_title(item.title)]


def has_entity_overlap(cluster_entities: Set[str], item_entities: List[str], min_overlap: int = 1) -> bool:
    """
    判斷是否有足夠的 entity 重疊

    min_overlap > 1 時，較小集合可放寬為 ceil(size / 2)，避免單一常見詞造成誤併。
    """
    shared = sum(1 for entity in item_entities if entity in cluster_entities)
    if shared == 0:
        return False

    smaller = min(len(cluster_entities), len(item_entities))
    required = min(min_overlap, math.ceil(smaller / 2))
    return shared >= max(1, required)


def semantic_signature(items: Iterable[NormalizedItem]) -> str:
    """排序後的小寫標題 hash"""
    titles = sorted(item.title.lower().strip() for item in items)
    return hashing.fnv1a32_hex('|'.join(titles))


def _serialize_source(source: StoryBundleSource) -> str:
    published = '' if source.published_at is None else str(source.published_at)
    return '|'.join([
        source.source_id,
        source.publisher,
        source.url,
        source.url_hash,
        published,
        source.title,
    ])


def provenance_hash(sources: Iterable[StoryBundleSource]) -> str:
    """來源清單序列化後排序再 hash；相同來源集合得到相同結果"""
    serialized = sorted(_serialize_source(source) for source in sources)
    return hashing.fnv1a32_hex('||'.join(serialized))


def headline_for_cluster(items: List[NormalizedItem]) -> str:
    """最新一篇的標題；時間相同取字典序最小的標題"""
    if not items:
        return "Untitled"
    ranked = sorted(items, key=lambda item: (-(item.published_at or 0), item.title))
    return ranked[0].title


def build_clusters(
    items: List[NormalizedItem],
    bucket_ms: int = HOUR_MS,
    min_entity_overlap: int = 1
) -> List[_Cluster]:
    """
    貪婪分群

    先依 (published_at, url_hash) 排序確保 determinism，再逐一放入第一個
    同時間桶且有 entity 重疊的 cluster，否則開新 cluster。
    """
    clusters: List[_Cluster] = []

    ordered = sorted(items, key=lambda item: (item.published_at or 0, item.url_hash))

    for item in ordered:
        start = bucket_start(item.published_at, bucket_ms)
        entity_keys = entity_keys_for_item(item)

        existing = next(
            (
                cluster for cluster in clusters
                if cluster.bucket_start == start
                and has_entity_overlap(cluster.entity_set, entity_keys, min_entity_overlap)
            ),
            None
        )

        if existing is not None:
            existing.items.append(item)
            published = item.published_at if item.published_at is not None else existing.bucket_end
            existing.bucket_end = max(existing.bucket_end, published)
            existing.entity_set.update(entity_keys)
            continue

        published = item.published_at if item.published_at is not None else start
        clusters.append(_Cluster(
            bucket_start=start,
            bucket_end=max(start + bucket_ms, published),
            items=[item],
            entity_set=set(entity_keys),
        ))

    return clusters


def create_story_bundle(
    cluster: _Cluster,
    topic_id: str,
    created_at: int
) -> StoryBundle:
    """
    建立單一 StoryBundle

    Args:
        cluster: 分群結果
        topic_id: Topic ID
        created_at: 建立時間 (epoch ms)

    Returns:
        StoryBundle
    """
    sorted_entities = sorted(cluster.entity_set)
    time_bucket = get_hourly_bucket_label(cluster.bucket_start)
    signature = semantic_signature(cluster.items)

    story_seed = '|'.join([topic_id, time_bucket, ','.join(sorted_entities), signature])

    sources = sorted(
        (
            StoryBundleSource(
                source_id=item.source_id,
                publisher=item.publisher,
                url=item.canonical_url,
                url_hash=item.url_hash,
                published_at=item.published_at if item.published_at is not None else cluster.bucket_start,
                title=item.title,
            )
            for item in cluster.items
        ),
        key=lambda source: (source.source_id, source.url_hash, source.title)
    )

    summary_hint = next((item.summary for item in cluster.items if item.summary), None)

    return StoryBundle(
        story_id=f"story-{hashing.fnv1a32_hex(story_seed)}",
        topic_id=topic_id,
        headline=headline_for_cluster(cluster.items),
        summary_hint=summary_hint,
        window_start=cluster.bucket_start,
        window_end=max(cluster.bucket_end, cluster.bucket_start),
        sources=sources,
        cluster_features=ClusterFeatures(
            entity_keys=sorted_entities,
            time_bucket=time_bucket,
            semantic_signature=signature,
        ),
        provenance_hash=provenance_hash(sources),
        created_at=created_at,
    )


# ── Verification scoring ───────────────────────────────────────────


def entity_overlap_ratio(cluster: _Cluster) -> float:
    """兩兩 item 的 entity 交集總數 / 聯集總數；單一 item 為 0"""
    per_item = [set(entity_keys_for_item(item)) for item in cluster.items]
    if len(per_item) < 2:
        return 0.0

    shared = 0
    union = 0
    for i, left in enumerate(per_item):
        for right in per_item[i + 1:]:
            shared += len(left & right)
            union += len(left | right)

    return shared / union if union else 0.0


def _published_spread_ms(cluster: _Cluster) -> int:
    timestamps = [item.published_at for item in cluster.items if item.published_at is not None]
    if len(timestamps) < 2:
        return 0
    return max(timestamps) - min(timestamps)


def time_proximity(cluster: _Cluster, bucket_ms: int = HOUR_MS) -> float:
    """發布時間分散程度；相差一個時間桶以上為 0"""
    return max(0.0, 1 - _published_spread_ms(cluster) / bucket_ms)


def source_diversity(cluster: _Cluster) -> float:
    if not cluster.items:
        return 0.0
    return len({item.source_id for item in cluster.items}) / len(cluster.items)


def cluster_confidence(cluster: _Cluster, bucket_ms: int = HOUR_MS) -> float:
    return (
        entity_overlap_ratio(cluster) * 0.4
        + time_proximity(cluster, bucket_ms) * 0.3
        + source_diversity(cluster) * 0.3
    )


def verify_cluster(
    cluster: _Cluster,
    bundle: StoryBundle,
    bucket_ms: int = HOUR_MS,
    verified_at: Optional[int] = None
) -> BundleVerification:
    """
    為單一 bundle 產生 BundleVerification

    Args:
        cluster: 產生該 bundle 的 cluster
        bundle: StoryBundle
        bucket_ms: 時間接近度的基準
        verified_at: 紀錄時間 (預設為現在)

    Returns:
        BundleVerification (evidence 依 entity → 時間 → 來源數 排列)
    """
    spread_hours = _published_spread_ms(cluster) / HOUR_MS
    source_count = len({item.source_id for item in cluster.items})

    return BundleVerification(
        story_id=bundle.story_id,
        confidence=min(1.0, cluster_confidence(cluster, bucket_ms)),
        evidence=[
            f"entity_overlap:{entity_overlap_ratio(cluster):.2f}",
            f"time_proximity:{spread_hours:.1f}h",
            f"source_count:{source_count}",
        ],
        verified_at=verified_at if verified_at is not None else now_ms(),
    )


def cluster_items_with_verification(
    items: Iterable[Union[NormalizedItem, Dict[str, Any]]],
    topic_id: str,
    bucket_ms: int = HOUR_MS,
    min_entity_overlap: int = 1,
    created_at: Optional[int] = None
) -> Tuple[List[StoryBundle], Dict[str, BundleVerification]]:
    """
    聚類並同時產生每個 bundle 的 verification

    Returns:
        (依 (window_start, story_id) 排序的 StoryBundles, story_id → BundleVerification)
    """
    if not topic_id or not topic_id.strip():
        raise ValueError("topic_id must be non-empty")

    parsed = [
        item if isinstance(item, NormalizedItem) else NormalizedItem.model_validate(item)
        for item in items
    ]
    if not parsed:
        return [], {}

    created = created_at if created_at is not None else now_ms()
    clusters = build_clusters(parsed, bucket_ms, min_entity_overlap)

    pairs = [(create_story_bundle(cluster, topic_id, created), cluster) for cluster in clusters]
    pairs.sort(key=lambda pair: (pair[0].window_start, pair[0].story_id))

    bundles = [bundle for bundle, _ in pairs]
    verifications = {
        bundle.story_id: verify_cluster(cluster, bundle, bucket_ms, created)
        for bundle, cluster in pairs
    }

    logger.info(f"Topic {topic_id}: {len(parsed)} items -> {len(bundles)} story bundles")
    return bundles, verifications


def cluster_items(
    items: Iterable[Union[NormalizedItem, Dict[str, Any]]],
    topic_id: str,
    bucket_ms: int = HOUR_MS,
    min_entity_overlap: int = 1,
    created_at: Optional[int] = None
) -> List[StoryBundle]:
    """
    將單一 topic 的 items 聚合成 StoryBundles

    Args:
        items: 同一 topic 的 NormalizedItems
        topic_id: Topic ID (不可為空)
        bucket_ms: 時間桶大小
        min_entity_overlap: 最少共享 entity key 數
        created_at: 建立時間 (預設為現在)

    Returns:
        依 (window_start, story_id) 排序的 StoryBundles
    """
    bundles, _ = cluster_items_with_verification(items, topic_id, bucket_ms, min_entity_overlap, created_at)
    return bundles
