"""
File-based storage backend

StoryBundle、TopicSynthesisOutput 與 tick 報告以 JSON 儲存在本地檔案系統:

    <base_dir>/bundles/<topic_id>/<story_id>.json
    <base_dir>/syntheses/<topic_id>/<epoch>.json
    <base_dir>/ticks/<tick_id>.json
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from topic_synth.models import StoryBundle, TickReport, TopicSynthesisOutput

logger = logging.getLogger(__name__)


class FileStore:
    """檔案儲存後端"""

    def __init__(self, base_dir: str = "memory"):
        """
        初始化 FileStore

        Args:
            base_dir: 基礎目錄
        """
        self.base_dir = Path(base_dir)
        self.bundles_dir = self.base_dir / "bundles"
        self.syntheses_dir = self.base_dir / "syntheses"
        self.ticks_dir = self.base_dir / "ticks"

        for dir_path in [self.bundles_dir, self.syntheses_dir, self.ticks_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"FileStore initialized at {self.base_dir}")

    def _write_json(self, file_path: Path, data) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

    def save_bundle(self, bundle: StoryBundle) -> Path:
        """寫入 StoryBundle (相同 story_id 覆寫)"""
        file_path = self.bundles_dir / bundle.topic_id / f"{bundle.story_id}.json"
        self._write_json(file_path, bundle.model_dump())
        logger.debug(f"Written story bundle: {file_path}")
        return file_path

    def save_synthesis(self, output: TopicSynthesisOutput) -> Path:
        """寫入 synthesis output (每個 topic epoch 一份)"""
        file_path = self.syntheses_dir / output.topic_id / f"{output.epoch}.json"
        self._write_json(file_path, output.model_dump())
        logger.info(f"Written synthesis: {file_path}")
        return file_path

    def save_tick(self, report: TickReport) -> None:
        """寫入 tick 報告"""
        file_path = self.ticks_dir / f"{report.tick_id}.json"
        self._write_json(file_path, report.model_dump())
        logger.info(f"Written tick report: {file_path}")

    def read_bundles(self, topic_id: str) -> List[StoryBundle]:
        """讀取 topic 的所有 bundles (依 story_id 排序)"""
        topic_dir = self.bundles_dir / topic_id

        if not topic_dir.exists():
            return []

        bundles = []
        for file_path in sorted(topic_dir.glob("*.json")):
            with open(file_path, 'r', encoding='utf-8') as f:
                bundles.append(StoryBundle(**json.load(f)))

        return bundles

    def read_synthesis(self, topic_id: str, epoch: int) -> Optional[TopicSynthesisOutput]:
        file_path = self.syntheses_dir / topic_id / f"{epoch}.json"

        if not file_path.exists():
            return None

        with open(file_path, 'r', encoding='utf-8') as f:
            return TopicSynthesisOutput(**json.load(f))

    def read_tick(self, tick_id: str) -> Optional[TickReport]:
        file_path = self.ticks_dir / f"{tick_id}.json"

        if not file_path.exists():
            return None

        with open(file_path, 'r', encoding='utf-8') as f:
            return TickReport(**json.load(f))


def write_story_bundle(store: FileStore, bundle: StoryBundle) -> Path:
    """NewsRuntime 預設的 write adapter"""
    return store.save_bundle(bundle)
