"""
CLI: Command Line Interface for Topic Synthesis

支援 init-config、run、watch 與 replay 命令。
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from topic_synth.config import ConfigurationError, TopicSynthConfig
from topic_synth.models import CommentEvent, TopicEpochMeta, TopicSynthesisOutput, VerifiedComment
from topic_synth.runtime.news import NewsRuntime
from topic_synth.storage.file_store import FileStore, write_story_bundle
from topic_synth.synthesis.pipeline import TopicSynthesisPipeline
from topic_synth.utils.time import coerce_timestamp_ms

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@click.group()
def cli():
    """Topic Synthesis CLI"""
    pass


@cli.command()
@click.option('--out', default='config.yaml', help='Output config file path')
def init_config(out: str):
    """產生範本設定檔"""

    example_path = Path(__file__).parent.parent / 'config.example.yaml'

    if example_path.exists():
        with open(example_path, 'r', encoding='utf-8') as f:
            content = f.read()
    else:
        # Minimal fallback
        content = """# Topic Synthesis Configuration
run_timezone: "UTC"
feed_sources: []
topic_mapping:
  default_topic_id: "topic-general"
"""

    with open(out, 'w', encoding='utf-8') as f:
        f.write(content)

    click.echo(f"✓ Config file created: {out}")
    click.echo(f"  Edit this file and run: topic-synth run --config {out}")


def load_config(path: str) -> TopicSynthConfig:
    logger.info(f"Loading config: {path}")
    return TopicSynthConfig.from_yaml(path)


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
def run(config: str):
    """執行一次 ingestion tick"""

    click.echo("=" * 60)
    click.echo("Topic Synthesis: news ingestion tick")
    click.echo("=" * 60)

    cfg = load_config(config)
    store = FileStore(cfg.storage.base_dir)

    # 明確呼叫 run 時不受 enable 旗標影響
    try:
        runtime = NewsRuntime.from_config(
            cfg,
            store=store,
            write_story_bundle=write_story_bundle,
            enabled=True,
            on_tick=store.save_tick,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    report = runtime.run_tick()

    if report is None or report.status != "completed":
        error = report.error if report else "tick skipped"
        raise click.ClickException(f"Tick failed: {error}")

    click.echo("\n" + "=" * 60)
    click.echo("TICK SUMMARY")
    click.echo("=" * 60)
    click.echo(f"Tick ID: {report.tick_id}")
    click.echo(f"Fetched: {report.stats['fetched_count']} items")
    click.echo(f"After dedupe: {report.stats['normalized_count']} items")
    click.echo(f"Story bundles: {report.stats['bundle_count']}")
    click.echo(f"Written: {report.stats['written_count']} -> {store.bundles_dir}")


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
def watch(config: str):
    """週期性執行 ingestion，直到中斷 (Ctrl+C)"""

    cfg = load_config(config)
    store = FileStore(cfg.storage.base_dir)

    try:
        runtime = NewsRuntime.from_config(
            cfg,
            store=store,
            write_story_bundle=write_story_bundle,
            on_tick=store.save_tick,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    if not runtime.start():
        raise click.ClickException(
            "News runtime is disabled; set runtime.enabled or TOPIC_SYNTH_NEWS_RUNTIME_ENABLED=1"
        )

    click.echo(f"✓ Watching {len(cfg.feed_sources)} feeds every {runtime.poll_interval_ms} ms (Ctrl+C to stop)")

    try:
        while runtime.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        runtime.stop()


class SessionReplay:
    """
    以 JSON session 驅動 TopicSynthesisPipeline

    Session 格式:
        topics: {topic_id: TopicEpochMeta}
        comments: [CommentEvent + content/stance]
        candidates: [{"topic_id", "at"?, "candidate": SynthesisCandidate}]
        end: 最後一次 check_timeouts 的時間 (選填)

    時間欄位可為 epoch 毫秒或 ISO8601 字串 (naive 時以 run_timezone 解讀)。
    """

    def __init__(self, session: Dict[str, Any], cfg: TopicSynthConfig):
        self.session = session
        self.tz_name = cfg.run_timezone
        self.clock = 0
        self.outputs: List[TopicSynthesisOutput] = []

        self.meta: Dict[str, TopicEpochMeta] = {}
        for topic_id, meta in (session.get('topics') or {}).items():
            meta = dict(meta)
            if meta.get('last_epoch_timestamp') is not None:
                meta['last_epoch_timestamp'] = self._ts(meta['last_epoch_timestamp'])
            self.meta[topic_id] = TopicEpochMeta.model_validate(meta)

        self.comments: Dict[str, VerifiedComment] = {}
        self.comment_topics: Dict[str, str] = {}

        self.pipeline = TopicSynthesisPipeline(
            resolve_topic_epoch_meta=self.meta.get,
            resolve_verified_comments=self.resolve_comments,
            on_synthesis_produced=self.record_output,
            now=lambda: self.clock,
            pipeline_config=cfg.synthesis,
            digest_config=cfg.digest,
        )

    def _ts(self, value) -> int:
        return coerce_timestamp_ms(value, self.tz_name)

    def resolve_comments(self, topic_id: str, window_start: int, window_end: int) -> List[VerifiedComment]:
        return [
            comment for comment_id, comment in self.comments.items()
            if self.comment_topics[comment_id] == topic_id
            and window_start <= comment.timestamp <= window_end
        ]

    def record_output(self, output: TopicSynthesisOutput) -> None:
        self.outputs.append(output)
        previous = self.meta.get(output.topic_id) or TopicEpochMeta(current_epoch=0, epochs_today=0)
        self.meta[output.topic_id] = TopicEpochMeta(
            current_epoch=output.epoch,
            last_epoch_timestamp=output.created_at,
            epochs_today=previous.epochs_today + 1,
        )

    def timeline(self) -> List[Tuple[Optional[int], str, Dict[str, Any]]]:
        """
        合併留言與 candidates，依時間排序

        時間相同時留言在前；沒有 `at` 的 candidate 依檔案順序排在所有事件之後。
        """
        timed = []
        for index, raw in enumerate(self.session.get('comments') or []):
            timed.append((self._ts(raw['timestamp']), 0, index, 'comment', raw))

        untimed = []
        for index, raw in enumerate(self.session.get('candidates') or []):
            if raw.get('at') is None:
                untimed.append((None, 'candidate', raw))
            else:
                timed.append((self._ts(raw['at']), 1, index, 'candidate', raw))

        timed.sort(key=lambda event: event[:3])
        return [(ts, kind, raw) for ts, _, _, kind, raw in timed] + untimed

    def replay(self) -> List[TopicSynthesisOutput]:
        for ts, kind, raw in self.timeline():
            if ts is not None:
                self.clock = max(self.clock, ts)
            self.pipeline.check_timeouts()

            if kind == 'comment':
                self._replay_comment(raw)
            else:
                self._replay_candidate(raw)

        if self.session.get('end') is not None:
            self.clock = max(self.clock, self._ts(self.session['end']))
            self.pipeline.check_timeouts()

        return self.outputs

    def _replay_comment(self, raw: Dict[str, Any]) -> None:
        event = CommentEvent(
            comment_id=raw['comment_id'],
            topic_id=raw['topic_id'],
            principal_hash=raw['principal_hash'],
            verified=raw.get('verified', True),
            kind=raw.get('kind', 'add'),
            timestamp=self._ts(raw['timestamp']),
        )
        self._track_content(event, raw)
        self.pipeline.on_comment_event(event)

    def _replay_candidate(self, raw: Dict[str, Any]) -> None:
        result = self.pipeline.add_candidate(raw['topic_id'], raw['candidate'])
        if not result.ok:
            click.echo(f"  candidate rejected ({raw['topic_id']}): {result.reason}")

    def _track_content(self, event: CommentEvent, raw: Dict[str, Any]) -> None:
        if event.kind == 'retract' or not event.verified:
            self.comments.pop(event.comment_id, None)
            return

        self.comments[event.comment_id] = VerifiedComment(
            comment_id=event.comment_id,
            content=raw.get('content', ''),
            stance=raw.get('stance', 'discuss'),
            principal_hash=event.principal_hash,
            timestamp=event.timestamp,
        )
        self.comment_topics[event.comment_id] = event.topic_id


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
@click.option('--session', 'session_path', required=True, help='Session JSON file path')
def replay(config: str, session_path: str):
    """重播留言與 candidates，產生 synthesis outputs"""

    cfg = load_config(config)
    store = FileStore(cfg.storage.base_dir)

    with open(session_path, 'r', encoding='utf-8') as f:
        session = json.load(f)

    outputs = SessionReplay(session, cfg).replay()

    for output in outputs:
        store.save_synthesis(output)

    click.echo(f"✓ Replayed session: {session_path}")
    click.echo(f"  Synthesis outputs: {len(outputs)}")
    for output in outputs:
        click.echo(f"  - {output.synthesis_id} (received={output.quorum.received}, " +
                   f"timed_out={output.quorum.timed_out})")


if __name__ == "__main__":
    cli()
