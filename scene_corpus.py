#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from scene_matcher import normalize_keywords

logger = logging.getLogger(__name__)


def _text_field(raw: Dict[str, Any], key: str) -> str:
    # 文字列以外の値は表示・検索の対象外として空文字にする
    value = raw.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        logger.warning(f"{key} が文字列ではありません: {value!r}")
        return ''
    return value


@dataclass
class Scene:
    """シナリオの1シーン。奇数/偶数 id でプロンプトと回答のペアになる。"""

    id: Optional[int]
    on_screen_text: str = ''
    dialogue: Union[str, Dict[str, Any], None] = None
    notes: str = ''
    keywords: Optional[List[str]] = None
    # ロード時に一度だけ計算する（None は未インデックス）
    normalized_keywords: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Scene':
        scene_id = raw.get('id')
        if isinstance(scene_id, bool) or not isinstance(scene_id, int):
            if scene_id is not None:
                logger.warning(f"シーンIDが整数ではありません: {scene_id!r}")
            scene_id = None
        keywords = raw.get('keywords')
        return cls(
            id=scene_id,
            on_screen_text=_text_field(raw, 'onScreenText'),
            dialogue=raw.get('dialogue'),
            notes=_text_field(raw, 'notes'),
            keywords=list(keywords) if isinstance(keywords, list) else None,
        )

    def index(self) -> None:
        self.normalized_keywords = normalize_keywords(self.keywords)


@dataclass(frozen=True)
class SceneCorpus:
    """ロード済みシーンの順序付きコレクション。ロード後は読み取り専用。"""

    scenes: Tuple[Scene, ...] = ()
    source: Optional[str] = None

    def __len__(self) -> int:
        return len(self.scenes)

    def __iter__(self):
        return iter(self.scenes)

    def get(self, scene_id: int) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    @classmethod
    def empty(cls, source: Optional[str] = None) -> 'SceneCorpus':
        return cls((), source)

    @classmethod
    def from_document(cls, document: Any, source: Optional[str] = None) -> 'SceneCorpus':
        """`{"scenes": [...]}` 形式のデータからコーパスを構築する。

        形式が不正な場合は例外を投げず、空のコーパスを返す。
        """
        raw_scenes = document.get('scenes') if isinstance(document, dict) else None
        if not isinstance(raw_scenes, list):
            logger.error('シーンデータ形式エラー: "scenes" フィールドは配列である必要があります')
            return cls.empty(source)

        scenes = []
        for position, raw in enumerate(raw_scenes):
            if not isinstance(raw, dict):
                logger.warning(f"シーン #{position} はオブジェクトではないためスキップします")
                continue
            scene = Scene.from_dict(raw)
            scene.index()
            scenes.append(scene)
        logger.info(f"シーンを読み込みました: {len(scenes)} 件")
        return cls(tuple(scenes), source)


def _is_url(source: str) -> bool:
    return source.startswith('http://') or source.startswith('https://')


def load_scene_document(source: str, timeout: float = 10.0) -> Any:
    """ローカルファイルまたは URL からシーン JSON を読み込む。"""
    if _is_url(source):
        res = requests.get(source, timeout=timeout)
        res.raise_for_status()
        return res.json()
    with open(source, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_corpus(source: str, timeout: float = 10.0) -> SceneCorpus:
    """シーンコーパスを読み込む。失敗時は空のコーパスを返す。"""
    try:
        document = load_scene_document(source, timeout)
    except (OSError, ValueError, requests.RequestException) as e:
        logger.error(f"シーンデータ読込エラー ({source}): {e}")
        return SceneCorpus.empty(source)
    return SceneCorpus.from_document(document, source)
