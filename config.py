#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""環境変数(.env)からの設定読み込み"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"{name} の値が不正です: {value!r}（既定値 {default} を使用）")
        return default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name} の値が不正です: {value!r}（既定値 {default} を使用）")
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# シーンデータ（ローカルパス または http(s) URL）
SCENES_JSON_PATH = os.getenv('SCENES_JSON_PATH') or 'scenes.json'
SCENES_FETCH_TIMEOUT = _float_env('SCENES_FETCH_TIMEOUT', 10.0)

# 応答セッションのタイミング（秒）
MIN_LOADING_SECONDS = _float_env('MIN_LOADING_SECONDS', 1.0)
THINKING_INTERVAL_SECONDS = _float_env('THINKING_INTERVAL_SECONDS', 0.5)
TYPING_INTERVAL_SECONDS = _float_env('TYPING_INTERVAL_SECONDS', 0.05)

# 固定表示文言
THINKING_LABEL = os.getenv('THINKING_LABEL') or '考え中'
NO_MATCH_TEXT = os.getenv('NO_MATCH_TEXT') or '一致するシーンが見つかりません。'
NO_PAIR_TEXT = os.getenv('NO_PAIR_TEXT') or '次のシーンがありません。'

# サーバー設定
SECRET_KEY = os.getenv('SECRET_KEY') or 'scene-demo-secret-key'
HOST = os.getenv('HOST') or '0.0.0.0'
PORT = _int_env('PORT', 8001)
DEBUG = _bool_env('DEBUG', False)
LOG_LEVEL = (os.getenv('LOG_LEVEL') or 'INFO').upper()
