"""
News Runtime

一次 tick = ingestion → 正規化/去重 → 依 topic 分組 → 聚類 → 寫入 StoryBundles。
Tick 之間不會重疊：進行中的 tick 會讓新的 tick 直接略過，等待下一次輪詢。
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from topic_synth.collectors.rss import ingest_feeds
from topic_synth.config import (
    ClusterConfig,
    ConfigurationError,
    NormalizeConfig,
    TopicMapping,
    TopicSynthConfig,
    normalize_poll_interval,
    resolve_runtime_enabled,
)
from topic_synth.models import (
    AnalysisRequest,
    BundleVerification,
    FeedSource,
    NormalizedItem,
    StoryBundle,
    SynthesisCandidateRequest,
    SynthesisProvider,
    TickReport,
)
from topic_synth.processing.cluster import cluster_items_with_verification
from topic_synth.processing.dedupe import deduplicate_items
from topic_synth.runtime.prompts import build_bundle_prompt
from topic_synth.utils import hashing
from topic_synth.utils.time import now_ms, utcnow

logger = logging.getLogger(__name__)

REMOTE_PROVIDER_ID = "remote-analysis"

WriteAdapter = Callable[[Any, StoryBundle], Any]


def group_by_topic(
    items: Iterable[NormalizedItem],
    topic_mapping: TopicMapping
) -> Dict[str, List[NormalizedItem]]:
    """source_id → topic_id；未對應的來源歸入 default topic"""
    groups: Dict[str, List[NormalizedItem]] = {}
    for item in items:
        groups.setdefault(topic_mapping.topic_for(item.source_id), []).append(item)
    return groups


def run_news_pipeline(
    feed_sources: Iterable[Union[FeedSource, Dict[str, Any]]],
    topic_mapping: Union[TopicMapping, Dict[str, Any]],
    normalize: Optional[NormalizeConfig] = None,
    cluster: Optional[ClusterConfig] = None,
    client: Optional[httpx.Client] = None,
    fetch_timeout_s: float = 20.0,
    created_at: Optional[int] = None
) -> Tuple[List[StoryBundle], Dict[str, BundleVerification], Dict[str, int]]:
    """
    執行 ingestion → 聚類

    Returns:
        (依 (topic_id, story_id) 排序的 bundles, story_id → BundleVerification, 統計資訊)
    """
    mapping = topic_mapping if isinstance(topic_mapping, TopicMapping) else TopicMapping.model_validate(topic_mapping)
    normalize = normalize or NormalizeConfig()
    cluster = cluster or ClusterConfig()

    raw_items = ingest_feeds(feed_sources, client=client, timeout_s=fetch_timeout_s)
    normalized, dedupe_stats = deduplicate_items(raw_items, normalize.near_duplicate_window_ms)

    created = created_at if created_at is not None else now_ms()
    bundles: List[StoryBundle] = []
    verifications: Dict[str, BundleVerification] = {}
    for topic_id, topic_items in sorted(group_by_topic(normalized, mapping).items()):
        topic_bundles, topic_verifications = cluster_items_with_verification(
            topic_items,
            topic_id,
            bucket_ms=cluster.bucket_ms,
            min_entity_overlap=cluster.min_entity_overlap,
            created_at=created,
        )
        bundles.extend(topic_bundles)
        verifications.update(topic_verifications)

    bundles.sort(key=lambda bundle: (bundle.topic_id, bundle.story_id))

    stats = {
        'fetched_count': dedupe_stats['original_count'],
        'normalized_count': dedupe_stats['final_count'],
        'bundle_count': len(bundles),
    }
    return bundles, verifications, stats


def orchestrate_news_pipeline(
    feed_sources: Iterable[Union[FeedSource, Dict[str, Any]]],
    topic_mapping: Union[TopicMapping, Dict[str, Any]],
    **kwargs
) -> List[StoryBundle]:
    """run_news_pipeline 的簡化版，只回傳 bundles"""
    bundles, _, _ = run_news_pipeline(feed_sources, topic_mapping, **kwargs)
    return bundles


def build_candidate_request(
    bundle: StoryBundle,
    model: str,
    create_prompt: Optional[Callable[[StoryBundle], str]] = None,
    verification: Optional[BundleVerification] = None
) -> SynthesisCandidateRequest:
    """
    不帶任何認證資訊的分析請求

    未提供 create_prompt 時使用 multi-source bundle prompt。
    """
    prompt = create_prompt(bundle) if create_prompt is not None else build_bundle_prompt(bundle, verification)
    request = AnalysisRequest(prompt=prompt, model=model)
    return SynthesisCandidateRequest(
        story_id=bundle.story_id,
        provider=SynthesisProvider(provider_id=REMOTE_PROVIDER_ID, model_id=request.model, kind="remote"),
        request=request,
    )


class NewsRuntime:
    """
    週期性 ingestion runtime

    Args:
        feed_sources: Feed 設定清單
        topic_mapping: 來源 → topic 對應
        store: 交給 write adapter 的儲存 handle
        write_story_bundle: (store, bundle) → Any；缺少時每次 tick 皆回報設定錯誤
        poll_interval_ms: 輪詢間隔；None 為 30 分鐘，非正數或非有限值拋出 ConfigurationError
        enabled: None 時讀取 TOPIC_SYNTH_NEWS_RUNTIME_ENABLED
        run_on_start: start() 時立即執行一次
        create_analysis_prompt: bundle → prompt；None 時使用 multi-source bundle prompt
        on_synthesis_candidate: 每個 bundle 寫入前呼叫
        on_error: tick 失敗時呼叫
        on_tick: 每次 tick 結束時收到 TickReport
        client: 注入的 httpx.Client (測試用)
    """

    def __init__(
        self,
        feed_sources: Iterable[Union[FeedSource, Dict[str, Any]]],
        topic_mapping: Union[TopicMapping, Dict[str, Any]],
        store: Any = None,
        write_story_bundle: Optional[WriteAdapter] = None,
        poll_interval_ms: Optional[float] = None,
        enabled: Optional[Union[bool, str]] = None,
        run_on_start: bool = True,
        create_analysis_prompt: Optional[Callable[[StoryBundle], str]] = None,
        on_synthesis_candidate: Optional[Callable[[SynthesisCandidateRequest], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_tick: Optional[Callable[[TickReport], None]] = None,
        analysis_model: str = "default",
        normalize: Optional[NormalizeConfig] = None,
        cluster: Optional[ClusterConfig] = None,
        client: Optional[httpx.Client] = None,
        fetch_timeout_s: float = 20.0,
        config_hash: str = ""
    ):
        self.poll_interval_ms = normalize_poll_interval(poll_interval_ms)
        self.enabled = resolve_runtime_enabled(enabled)

        self.feed_sources = list(feed_sources)
        self.topic_mapping = (
            topic_mapping if isinstance(topic_mapping, TopicMapping)
            else TopicMapping.model_validate(topic_mapping)
        )
        self.store = store
        self.write_story_bundle = write_story_bundle
        self.run_on_start = run_on_start
        self.create_analysis_prompt = create_analysis_prompt
        self.on_synthesis_candidate = on_synthesis_candidate
        self.on_error = on_error
        self.on_tick = on_tick
        self.analysis_model = analysis_model
        self.normalize = normalize or NormalizeConfig()
        self.cluster = cluster or ClusterConfig()
        self.client = client
        self.fetch_timeout_s = fetch_timeout_s
        self.config_hash = config_hash

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._last_run: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: TopicSynthConfig, **kwargs) -> "NewsRuntime":
        """由 TopicSynthConfig 建立；kwargs 可覆寫任何建構參數"""
        options = dict(
            feed_sources=config.feed_sources,
            topic_mapping=config.topic_mapping,
            poll_interval_ms=config.runtime.poll_interval_ms,
            enabled=config.runtime.enabled,
            run_on_start=config.runtime.run_on_start,
            analysis_model=config.runtime.analysis_model,
            normalize=config.normalize,
            cluster=config.cluster,
            fetch_timeout_s=config.runtime.fetch_timeout_s,
            config_hash=hashing.config_hash(config.model_dump()),
        )
        options.update(kwargs)
        return cls(**options)

    def run_tick(self) -> Optional[TickReport]:
        """
        執行一次 tick

        Returns:
            TickReport；停用中或已有 tick 進行中時回傳 None
        """
        if not self.enabled:
            logger.debug("News runtime disabled; tick skipped")
            return None

        if not self._tick_lock.acquire(blocking=False):
            logger.info("Previous tick still in flight; tick skipped")
            return None

        try:
            return self._execute_tick()
        finally:
            self._tick_lock.release()

    def _execute_tick(self) -> TickReport:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        report = TickReport(
            tick_id=f"tick_{timestamp}_{uuid.uuid4().hex[:8]}",
            started_at=now_ms(),
            config_hash=self.config_hash,
        )
        logger.info(f"Tick started: {report.tick_id}")

        try:
            if self.write_story_bundle is None:
                raise ConfigurationError("write_story_bundle adapter is required")

            bundles, verifications, stats = run_news_pipeline(
                self.feed_sources,
                self.topic_mapping,
                normalize=self.normalize,
                cluster=self.cluster,
                client=self.client,
                fetch_timeout_s=self.fetch_timeout_s,
            )
            stats['written_count'] = 0
            report.stats = stats

            for bundle in bundles:
                if self.on_synthesis_candidate is not None:
                    self.on_synthesis_candidate(
                        build_candidate_request(
                            bundle,
                            self.analysis_model,
                            self.create_analysis_prompt,
                            verifications.get(bundle.story_id),
                        )
                    )

                self.write_story_bundle(self.store, bundle)
                stats['written_count'] += 1

            report.status = "completed"
            self._last_run = utcnow()
            logger.info(f"Tick completed: {report.tick_id} " +
                        f"({stats['fetched_count']} fetched, {stats['bundle_count']} bundles, " +
                        f"{stats['written_count']} written)")

        except Exception as e:
            report.status = "failed"
            report.error = str(e)
            logger.error(f"Tick failed: {report.tick_id}: {e}", exc_info=True)
            if self.on_error is not None:
                self.on_error(e)

        report.finished_at = now_ms()

        if self.on_tick is not None:
            self.on_tick(report)

        return report

    def start(self) -> bool:
        """
        啟動背景輪詢執行緒

        Returns:
            是否正在執行 (停用時為 False)
        """
        if not self.enabled:
            logger.info("News runtime disabled; not starting")
            return False

        if self._running:
            return True

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="news-runtime", daemon=True)
        self._thread.start()

        logger.info(f"News runtime started (poll interval {self.poll_interval_ms} ms)")
        return True

    def _loop(self) -> None:
        if self.run_on_start:
            self._safe_tick()

        while not self._stop_event.wait(self.poll_interval_ms / 1000):
            self._safe_tick()

    def _safe_tick(self) -> None:
        # on_error / on_tick 拋出的例外不可中斷輪詢
        try:
            self.run_tick()
        except Exception as e:
            logger.error(f"News runtime loop error: {e}", exc_info=True)

    def stop(self, timeout: Optional[float] = None) -> None:
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

        logger.info("News runtime stopped")

    def is_running(self) -> bool:
        return self._running

    def last_run(self) -> Optional[datetime]:
        """最近一次成功 tick 的完成時間 (UTC)"""
        return self._last_run
