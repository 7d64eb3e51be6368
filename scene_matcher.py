#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""シーンマッチングエンジン。

入力テキストを正規化してキーワード化し、シーンコーパスから
  1) キーワード交差数によるベストマッチ
  2) 部分文字列によるフォールバック
の順で一致シーンを探し、奇数/偶数ペアの相手シーンを「回答」として返す。
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

# 除去する文字（句読点・中黒・三点リーダ / 疑問符・感嘆符・カンマ）
_DOTS_RE = re.compile(r"[.·…]")
_MARKS_RE = re.compile(r"[?!,]")
_SPACES_RE = re.compile(r"\s+")

UNMATCHED = 'unmatched'
UNPAIRED = 'unpaired'
RESOLVED = 'resolved'


def normalize_text(text: Any) -> str:
    """比較用の正規形に変換する。文字列以外・空文字は '' を返す。"""
    if not text or not isinstance(text, str):
        return ''
    t = _DOTS_RE.sub('', text)
    t = _MARKS_RE.sub('', t)
    t = _SPACES_RE.sub(' ', t)
    return t.strip().lower()


def extract_keywords(text: Any) -> List[str]:
    """正規化テキストを空白で分割し、出現順を保って重複を除いたキーワード列を返す。"""
    norm = normalize_text(text)
    parts = [tok for tok in norm.split(' ') if tok]
    return list(dict.fromkeys(parts))


def normalize_keywords(keywords: Any) -> List[str]:
    if not isinstance(keywords, list):
        return []
    return [k for k in (normalize_text(kw) for kw in keywords) if k]


def intersection_size(input_keys: Iterable[str], scene_keys: Iterable[str]) -> int:
    scene_set = set(scene_keys)
    return sum(1 for key in input_keys if key in scene_set)


def _scene_keys(scene) -> List[str]:
    # ロード時のキャッシュがあればそれを使う
    if scene.normalized_keywords is not None:
        return scene.normalized_keywords
    return normalize_keywords(scene.keywords)


def best_match(scenes, input_text: str):
    """キーワード交差数が最大のシーンを返す（ステージ1）。

    同点の場合は、走査中に後から現れたシーンの id が小さいときだけ入れ替える。
    どのシーンとも交差しなければ None。
    """
    input_keywords = extract_keywords(input_text)
    if not input_keywords:
        return None

    best_scene = None
    best_score = 0
    for scene in scenes:
        score = intersection_size(input_keywords, _scene_keys(scene))
        if score > best_score:
            best_score = score
            best_scene = scene
        elif score == best_score and score > 0:
            if _id_less(scene.id, best_scene.id):
                best_scene = scene

    if best_score <= 0:
        return None
    return best_scene


def _id_less(candidate_id, current_id) -> bool:
    if not isinstance(candidate_id, int) or not isinstance(current_id, int):
        return False
    return candidate_id < current_id


def matches_scene_text(scene, raw_query: str) -> bool:
    """シーンの表示テキスト・台詞・メモ・キーワードに正規化クエリが含まれるか。"""
    if not raw_query:
        return False
    q = normalize_text(raw_query)

    if scene.on_screen_text and q in normalize_text(scene.on_screen_text):
        return True
    dialogue = scene.dialogue
    if isinstance(dialogue, str) and q in normalize_text(dialogue):
        return True
    if isinstance(dialogue, dict):
        if dialogue.get('user') and q in normalize_text(dialogue['user']):
            return True
        if dialogue.get('gpt') and q in normalize_text(dialogue['gpt']):
            return True
    if scene.notes and q in normalize_text(scene.notes):
        return True
    if isinstance(scene.keywords, list):
        input_keys = [x for x in q.split(' ') if x]
        scene_keys = [normalize_text(k) for k in scene.keywords]
        if intersection_size(input_keys, scene_keys) > 0:
            return True
    return False


def fallback_match(scenes, input_text: str):
    """部分文字列マッチで最初に該当したシーンを返す（ステージ2）。"""
    for scene in scenes:
        if matches_scene_text(scene, input_text):
            return scene
    return None


def paired_scene(scenes, scene):
    """奇数 id → id+1、偶数 id → id-1 のシーンを返す。無ければ None。"""
    if scene is None:
        return None
    scene_id = scene.id
    if not isinstance(scene_id, int) or isinstance(scene_id, bool):
        return None
    target = scene_id + 1 if scene_id % 2 == 1 else scene_id - 1
    for candidate in scenes:
        if candidate.id == target and not isinstance(candidate.id, bool):
            return candidate
    return None


@dataclass(frozen=True)
class MatchOutcome:
    """マッチ結果の分類（unmatched / unpaired / resolved）"""

    kind: str
    matched: Any = None
    paired: Any = None

    @property
    def matched_id(self) -> Optional[int]:
        return self.matched.id if self.matched is not None else None

    @property
    def paired_id(self) -> Optional[int]:
        return self.paired.id if self.paired is not None else None

    def text(self, no_match_text: str, no_pair_text: str) -> str:
        if self.kind == UNMATCHED:
            return no_match_text
        if self.kind == UNPAIRED:
            return no_pair_text
        return self.paired.on_screen_text or ''


def resolve_prompt(corpus, prompt: str) -> MatchOutcome:
    """ステージ1 → ステージ2 → ペア解決 の順に評価して結果を返す。"""
    scenes = corpus.scenes
    matched = best_match(scenes, prompt)
    if matched is None:
        matched = fallback_match(scenes, prompt)
    if matched is None:
        return MatchOutcome(UNMATCHED)

    paired = paired_scene(scenes, matched)
    if paired is None:
        return MatchOutcome(UNPAIRED, matched=matched)
    return MatchOutcome(RESOLVED, matched=matched, paired=paired)
