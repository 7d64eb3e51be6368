#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
from typing import Optional

logger = logging.getLogger(__name__)

# 出力領域の役割
ROLE_USER = 'user'
ROLE_ASSISTANT = 'assistant'

# 出力領域の表示フェーズ
PHASE_LOADING = 'loading'
PHASE_TYPING = 'typing'
PHASE_IDLE = 'idle'


class RenderSurface:
    """エンジンが表示を依頼する先のインターフェース。

    レイアウトやスタイルは扱わず、領域ID単位でテキストの更新だけを伝える。
    """

    def create_region(self, region_id: str, role: str, text: str = '') -> None:
        raise NotImplementedError

    def set_text(self, region_id: str, text: str) -> None:
        raise NotImplementedError

    def append_text(self, region_id: str, text: str) -> None:
        raise NotImplementedError

    def append_line_break(self, region_id: str) -> None:
        raise NotImplementedError

    def set_phase(self, region_id: str, phase: str) -> None:
        raise NotImplementedError

    def show_error(self, region_id: str, message: str) -> None:
        raise NotImplementedError

    def set_busy(self, busy: bool) -> None:
        raise NotImplementedError

    def set_retry_available(self, available: bool) -> None:
        raise NotImplementedError


class SocketIORenderSurface(RenderSurface):
    """1クライアント（sid）向けに Socket.IO イベントとして表示更新を送る"""

    def __init__(self, socketio, sid: Optional[str] = None, namespace: str = '/'):
        self.socketio = socketio
        self.sid = sid
        self.namespace = namespace

    def _emit(self, event: str, payload: dict) -> None:
        self.socketio.emit(event, payload, to=self.sid, namespace=self.namespace)

    def create_region(self, region_id, role, text=''):
        self._emit('region_created', {'id': region_id, 'role': role, 'text': text})

    def set_text(self, region_id, text):
        self._emit('region_text', {'id': region_id, 'text': text})

    def append_text(self, region_id, text):
        self._emit('region_append', {'id': region_id, 'text': text})

    def append_line_break(self, region_id):
        self._emit('region_break', {'id': region_id})

    def set_phase(self, region_id, phase):
        self._emit('region_phase', {'id': region_id, 'phase': phase})

    def show_error(self, region_id, message):
        logger.debug(f"エラー表示 [{region_id}]: {message}")
        self._emit('region_error', {'id': region_id, 'message': message})

    def set_busy(self, busy):
        self._emit('busy', {'busy': bool(busy)})

    def set_retry_available(self, available):
        self._emit('retry_available', {'available': bool(available)})
