import heapq
import itertools

import pytest

from render_surface import RenderSurface
from response_session import SessionTiming
from scene_corpus import SceneCorpus
from timers import TimerHandle


class ManualScheduler:
    """仮想時計で動くテスト用スケジューラ（advance() で時間を進める）"""

    def __init__(self):
        self.time = 0.0
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.time

    def run_serialized(self, callback, *args, **kwargs):
        return callback(*args, **kwargs)

    def call_later(self, delay, callback, name=''):
        handle = TimerHandle(name)
        self._push(self.time + max(0.0, delay), handle, callback, None)
        return handle

    def call_every(self, period, callback, name=''):
        handle = TimerHandle(name)
        self._push(self.time + period, handle, callback, period)
        return handle

    def _push(self, due, handle, callback, period):
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, period))

    def advance(self, seconds):
        target = self.time + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _, handle, callback, period = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.time = max(self.time, due)
            callback()
            if period is not None and not handle.cancelled:
                self._push(due + period, handle, callback, period)
        self.time = target

    def run_until_idle(self, limit=10000):
        steps = 0
        while self._queue and steps < limit:
            due = self._queue[0][0]
            self.advance(max(0.0, due - self.time))
            steps += 1

    def pending(self):
        return [entry[2] for entry in self._queue if not entry[2].cancelled]


class RecordingSurface(RenderSurface):
    """表示依頼を記録するテスト用の RenderSurface"""

    def __init__(self):
        self.events = []
        self.regions = {}
        self.busy = False
        self.retry_available = False

    def create_region(self, region_id, role, text=''):
        self.events.append(('create', region_id, role, text))
        self.regions[region_id] = {'role': role, 'text': text, 'phase': None, 'error': None}

    def set_text(self, region_id, text):
        self.events.append(('text', region_id, text))
        self.regions[region_id]['text'] = text

    def append_text(self, region_id, text):
        self.events.append(('append', region_id, text))
        self.regions[region_id]['text'] += text

    def append_line_break(self, region_id):
        self.events.append(('break', region_id))
        self.regions[region_id]['text'] += '<br>'

    def set_phase(self, region_id, phase):
        self.events.append(('phase', region_id, phase))
        self.regions[region_id]['phase'] = phase

    def show_error(self, region_id, message):
        self.events.append(('error', region_id, message))
        self.regions[region_id]['error'] = message
        self.regions[region_id]['text'] = message

    def set_busy(self, busy):
        self.events.append(('busy', busy))
        self.busy = busy

    def set_retry_available(self, available):
        self.events.append(('retry', available))
        self.retry_available = available

    def texts(self, region_id):
        return [e[2] for e in self.events if e[0] == 'text' and e[1] == region_id]


SAMPLE_DOCUMENT = {
    "scenes": [
        {"id": 1, "onScreenText": "Hello there", "notes": "greeting",
         "keywords": ["Hello", "Hi"]},
        {"id": 2, "onScreenText": "Hi! How can I help?", "keywords": []},
        {"id": 3, "onScreenText": "What's the weather?",
         "dialogue": {"user": "Is it raining today?", "gpt": ""},
         "keywords": ["weather", "rain"]},
        {"id": 4, "onScreenText": "Sunny.\nA little cold tonight.", "keywords": []},
        {"id": 5, "onScreenText": "Recommend a book", "dialogue": "any good novels lately",
         "notes": "no answer scene", "keywords": ["book"]},
    ]
}

FAST_TIMING = SessionTiming(
    min_loading=1.0,
    thinking_interval=0.5,
    typing_interval=0.05,
    thinking_label='Thinking',
    no_match_text='No scene matched.',
    no_pair_text='No next scene.',
)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def corpus():
    return SceneCorpus.from_document(SAMPLE_DOCUMENT, source='memory')


@pytest.fixture
def timing():
    return FAST_TIMING
