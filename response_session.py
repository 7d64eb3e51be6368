#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""1回の送信に対する応答セッション（状態機械）。

submitting → loading →（最低表示時間の経過後）→ typing → done
                                          └→ error → retry-ready
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import config
from render_surface import PHASE_IDLE, PHASE_LOADING, PHASE_TYPING
from scene_matcher import MatchOutcome, resolve_prompt
from timers import TimerHandle

logger = logging.getLogger(__name__)


class SessionState:
    SUBMITTING = 'submitting'
    LOADING = 'loading'
    TYPING = 'typing'
    DONE = 'done'
    ERROR = 'error'
    RETRY_READY = 'retry-ready'

    ACTIVE = (SUBMITTING, LOADING, TYPING)


def new_session_id() -> str:
    """表示領域と結び付くセッションIDを生成する"""
    timestamp = int(time.time() * 1000)
    return f"id-{timestamp}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class SessionTiming:
    min_loading: float = 1.0
    thinking_interval: float = 0.5
    typing_interval: float = 0.05
    thinking_label: str = '考え中'
    no_match_text: str = '一致するシーンが見つかりません。'
    no_pair_text: str = '次のシーンがありません。'

    @classmethod
    def from_config(cls) -> 'SessionTiming':
        return cls(
            min_loading=config.MIN_LOADING_SECONDS,
            thinking_interval=config.THINKING_INTERVAL_SECONDS,
            typing_interval=config.TYPING_INTERVAL_SECONDS,
            thinking_label=config.THINKING_LABEL,
            no_match_text=config.NO_MATCH_TEXT,
            no_pair_text=config.NO_PAIR_TEXT,
        )


Resolver = Callable[[Any, str], MatchOutcome]


class ResponseSession:
    def __init__(self, session_id: str, prompt: str, corpus, surface, scheduler,
                 timing: SessionTiming,
                 thinking_timers: Dict[str, TimerHandle],
                 on_finished: Callable[['ResponseSession'], None],
                 resolver: Resolver = resolve_prompt):
        self.id = session_id
        self.prompt = prompt
        self.state = SessionState.SUBMITTING
        self.started_at: Optional[float] = None
        self.outcome: Optional[MatchOutcome] = None
        self.output_text = ''
        self.error: Optional[BaseException] = None
        self.cancelled = False

        self.corpus = corpus
        self.surface = surface
        self.scheduler = scheduler
        self.timing = timing
        self.resolver = resolver
        self._thinking_timers = thinking_timers
        self._on_finished = on_finished

        self._active = True
        self._dot_count = 0
        self._typed = 0
        self._thinking: Optional[TimerHandle] = None
        self._loading_wait: Optional[TimerHandle] = None
        self._typing: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    # loading
    # ------------------------------------------------------------------
    def start(self) -> None:
        """「考え中」表示を開始してマッチングを行い、最低表示時間後に結果へ進む"""
        self._cancel_previous_thinking()
        self.state = SessionState.LOADING
        self.started_at = self.scheduler.now()
        logger.info(f"応答セッション開始 [{self.id}]: {self.prompt!r}")

        try:
            self._show_thinking()
            self.outcome = self.resolver(self.corpus, self.prompt)
            self.output_text = self.outcome.text(self.timing.no_match_text, self.timing.no_pair_text)
            logger.info(
                f"マッチ結果 [{self.id}]: {self.outcome.kind} "
                f"(matched={self.outcome.matched_id}, paired={self.outcome.paired_id})"
            )
        except Exception as e:
            logger.exception(f"マッチング処理でエラーが発生しました [{self.id}]")
            self.error = e

        elapsed = self.scheduler.now() - self.started_at
        wait = max(0.0, self.timing.min_loading - elapsed)
        self._loading_wait = self.scheduler.call_later(
            wait, self._guarded(self._finish_loading), name=f"loading:{self.id}")

    def _cancel_previous_thinking(self) -> None:
        previous = self._thinking_timers.pop(self.id, None)
        if previous is not None:
            previous.cancel()

    def _show_thinking(self) -> None:
        self.surface.set_phase(self.id, PHASE_LOADING)
        self.surface.set_text(self.id, self.timing.thinking_label)
        self._dot_count = 0
        self._thinking = self.scheduler.call_every(
            self.timing.thinking_interval, self._guarded(self._tick_thinking),
            name=f"thinking:{self.id}")
        self._thinking_timers[self.id] = self._thinking

    def _tick_thinking(self) -> None:
        self._dot_count = (self._dot_count + 1) % 4
        self.surface.set_text(self.id, self.timing.thinking_label + '.' * self._dot_count)

    def _stop_thinking(self) -> None:
        if self._thinking is None:
            return
        self._thinking.cancel()
        if self._thinking_timers.get(self.id) is self._thinking:
            del self._thinking_timers[self.id]
        self._thinking = None

    def _finish_loading(self) -> None:
        self._stop_thinking()
        if self.error is not None:
            self._fail(self.error)
            return
        self._start_typing()

    # ------------------------------------------------------------------
    # typing
    # ------------------------------------------------------------------
    def _start_typing(self) -> None:
        self.state = SessionState.TYPING
        self.surface.set_text(self.id, '')
        self.surface.set_phase(self.id, PHASE_TYPING)
        self._typed = 0
        self._typing = self.scheduler.call_every(
            self.timing.typing_interval, self._guarded(self._type_next),
            name=f"typing:{self.id}")

    def _type_next(self) -> None:
        text = self.output_text
        if self._typed < len(text):
            char = text[self._typed]
            if char == '\n':
                self.surface.append_line_break(self.id)
            else:
                self.surface.append_text(self.id, char)
        self._typed += 1
        if self._typed >= len(text):
            self._typing.cancel()
            self._typing = None
            self.surface.set_phase(self.id, PHASE_IDLE)
            self.state = SessionState.DONE
            logger.info(f"応答セッション完了 [{self.id}]")
            self._finish()

    # ------------------------------------------------------------------
    # error / finish
    # ------------------------------------------------------------------
    def _fail(self, error: BaseException) -> None:
        self.error = error
        self.state = SessionState.ERROR
        try:
            self.surface.set_phase(self.id, PHASE_IDLE)
            self.surface.show_error(self.id, f"Error: {error_message(error)}")
        finally:
            self.state = SessionState.RETRY_READY
            self._finish()

    def _finish(self) -> None:
        self._active = False
        self._on_finished(self)

    def _guarded(self, step: Callable[[], None]) -> Callable[[], None]:
        """タイマー処理中の例外をセッションのエラーとして扱う"""
        def run():
            if not self._active:
                return
            try:
                step()
            except Exception as e:
                if not self._active:
                    raise
                logger.exception(f"応答セッション処理でエラーが発生しました [{self.id}]")
                self._stop_timers()
                self._fail(e)
        return run

    def _stop_timers(self) -> None:
        self._stop_thinking()
        for handle in (self._loading_wait, self._typing):
            if handle is not None:
                handle.cancel()
        self._loading_wait = None
        self._typing = None

    def cancel(self) -> None:
        """進行中のタイマーを止めてセッションを破棄する（ベストエフォート）"""
        if not self._active:
            return
        self._active = False
        self.cancelled = True
        self._stop_timers()
        self.state = SessionState.DONE
        logger.info(f"応答セッションを中断しました [{self.id}]")

    @property
    def is_active(self) -> bool:
        return self._active and self.state in SessionState.ACTIVE


def error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__
