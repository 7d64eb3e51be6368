#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
from typing import Any, Callable, Dict, Optional

from render_surface import ROLE_ASSISTANT, ROLE_USER
from response_session import (
    ResponseSession,
    SessionState,
    SessionTiming,
    new_session_id,
)
from scene_matcher import resolve_prompt
from timers import TimerHandle


class SubmissionController:
    """送信を直列化する窓口。

    - 応答中（busy）の送信は何もしない（キューイングもエラーもしない）
    - エラーになったセッションの (prompt, id) を1件だけ保持し、retry() で再実行する
    - セッションID → 「考え中」タイマー の対応を保持する
    """

    def __init__(self, corpus, surface, scheduler,
                 timing: Optional[SessionTiming] = None,
                 resolver: Callable[[Any, str], Any] = resolve_prompt,
                 id_factory: Callable[[], str] = new_session_id):
        self.corpus = corpus
        self.surface = surface
        self.scheduler = scheduler
        self.timing = timing or SessionTiming.from_config()
        self.resolver = resolver
        self.id_factory = id_factory

        self.busy = False
        self.active_session: Optional[ResponseSession] = None
        self.retry_prompt: Optional[str] = None
        self.retry_session_id: Optional[str] = None
        self.thinking_timers: Dict[str, TimerHandle] = {}

        self.logger = logging.getLogger(__name__)

    @property
    def retry_available(self) -> bool:
        return self.retry_prompt is not None and self.retry_session_id is not None

    def submit(self, prompt: str) -> Optional[ResponseSession]:
        """ユーザーの入力を送信する。応答中または空入力なら None を返す。"""
        if self.busy:
            self.logger.debug("応答中のため送信を無視しました")
            return None
        if not isinstance(prompt, str) or not prompt.strip():
            return None
        return self._start(prompt, None)

    def retry(self) -> Optional[ResponseSession]:
        """保持している (prompt, id) で同じ応答領域に再実行する"""
        if self.busy or not self.retry_available:
            return None
        prompt, session_id = self.retry_prompt, self.retry_session_id
        self._clear_retry()
        self.logger.info(f"再試行 [{session_id}]: {prompt!r}")
        return self._start(prompt, session_id)

    def _start(self, prompt: str, retry_session_id: Optional[str]) -> ResponseSession:
        self.busy = True
        self.surface.set_busy(True)

        if retry_session_id is None:
            self.surface.create_region(self.id_factory(), ROLE_USER, prompt)
            session_id = self.id_factory()
            self.surface.create_region(session_id, ROLE_ASSISTANT, '')
        else:
            session_id = retry_session_id

        session = ResponseSession(
            session_id, prompt, self.corpus, self.surface, self.scheduler,
            self.timing, self.thinking_timers, self._on_session_finished,
            resolver=self.resolver,
        )
        self.active_session = session
        session.start()
        return session

    def _on_session_finished(self, session: ResponseSession) -> None:
        if session is not self.active_session:
            # 置き換え済みセッションの遅延通知は無視する
            return
        self.active_session = None
        self.busy = False

        if session.state == SessionState.RETRY_READY:
            self.retry_prompt = session.prompt
            self.retry_session_id = session.id
            self.surface.set_retry_available(True)
        else:
            self._clear_retry()
        self.surface.set_busy(False)

    def _clear_retry(self) -> None:
        self.retry_prompt = None
        self.retry_session_id = None
        self.surface.set_retry_available(False)

    def cancel_active(self) -> None:
        """進行中のセッションを中断する（クライアント切断時など）"""
        session = self.active_session
        if session is None:
            return
        session.cancel()
        self.active_session = None
        self.busy = False

    def snapshot(self) -> Dict[str, Any]:
        session = self.active_session
        return {
            'busy': self.busy,
            'active_session_id': session.id if session else None,
            'active_state': session.state if session else None,
            'retry_available': self.retry_available,
            'retry_session_id': self.retry_session_id,
        }
