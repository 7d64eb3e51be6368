#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""キャンセル可能なタイマーと協調スケジューラ。

すべてのタイマーコールバックとソケットイベント処理は同じロックの下で実行され、
論理的には単一スレッドとして振る舞う。
"""

import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TimerHandle:
    """call_later / call_every が返すハンドル"""

    def __init__(self, name: str = ''):
        self.name = name
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        state = 'cancelled' if self._cancelled else 'pending'
        return f"<TimerHandle {self.name or '-'} {state}>"


class SocketIOScheduler:
    """Flask-SocketIO のバックグラウンドタスクで動くスケジューラ。

    `socketio.sleep` を使うため、threading / eventlet / gevent どの非同期モードでも動作する。
    """

    def __init__(self, socketio, clock: Callable[[], float] = time.monotonic):
        self.socketio = socketio
        self._clock = clock
        self.lock = threading.RLock()

    def now(self) -> float:
        return self._clock()

    def run_serialized(self, callback: Callable[..., Any], *args, **kwargs) -> Any:
        with self.lock:
            return callback(*args, **kwargs)

    def call_later(self, delay: float, callback: Callable[[], Any], name: str = '') -> TimerHandle:
        handle = TimerHandle(name)
        self.socketio.start_background_task(self._run_later, handle, max(0.0, delay), callback)
        return handle

    def call_every(self, period: float, callback: Callable[[], Any], name: str = '') -> TimerHandle:
        handle = TimerHandle(name)
        self.socketio.start_background_task(self._run_every, handle, period, callback)
        return handle

    def _run_later(self, handle: TimerHandle, delay: float, callback: Callable[[], Any]) -> None:
        self.socketio.sleep(delay)
        with self.lock:
            if handle.cancelled:
                return
            self._invoke(handle, callback)

    def _run_every(self, handle: TimerHandle, period: float, callback: Callable[[], Any]) -> None:
        while not handle.cancelled:
            self.socketio.sleep(period)
            with self.lock:
                if handle.cancelled:
                    return
                self._invoke(handle, callback)

    @staticmethod
    def _invoke(handle: TimerHandle, callback: Callable[[], Any]) -> None:
        try:
            callback()
        except Exception:
            # バックグラウンドタスク内の例外はここで止めて記録する
            handle.cancel()
            logger.exception(f"タイマー処理でエラーが発生しました: {handle!r}")
