"""送信コントローラー（busy フラグ・再試行）のテスト"""

import itertools

import pytest

from response_session import SessionState
from scene_matcher import resolve_prompt
from submission_controller import SubmissionController


class FlakyResolver:
    """最初の n 回だけ失敗する resolver"""

    def __init__(self, failures=1):
        self.failures = failures
        self.calls = []

    def __call__(self, corpus, prompt):
        self.calls.append(prompt)
        if len(self.calls) <= self.failures:
            raise ConnectionError("scene index unavailable")
        return resolve_prompt(corpus, prompt)


@pytest.fixture
def make_controller(corpus, surface, scheduler, timing):
    def build(resolver=resolve_prompt):
        counter = itertools.count(1)
        return SubmissionController(
            corpus, surface, scheduler, timing,
            resolver=resolver, id_factory=lambda: f"id-{next(counter)}",
        )
    return build


def test_submit_creates_user_and_answer_regions(make_controller, surface, scheduler):
    controller = make_controller()
    session = controller.submit("Hello!")

    assert session.id == "id-2"
    assert surface.events[:3] == [
        ("busy", True),
        ("create", "id-1", "user", "Hello!"),
        ("create", "id-2", "assistant", ""),
    ]
    assert controller.busy
    assert controller.active_session is session

    scheduler.run_until_idle()
    assert session.state == SessionState.DONE
    assert not controller.busy
    assert controller.active_session is None
    assert surface.busy is False
    assert surface.regions["id-2"]["text"] == "Hi! How can I help?"


@pytest.mark.parametrize("prompt", ["", "   ", "\n\t", None])
def test_blank_submit_is_noop(make_controller, surface, prompt):
    controller = make_controller()
    assert controller.submit(prompt) is None
    assert surface.events == []
    assert not controller.busy


def test_submit_while_busy_is_noop(make_controller, surface, scheduler):
    controller = make_controller()
    first = controller.submit("hello")
    events = list(surface.events)

    scheduler.advance(0.5)
    assert controller.submit("weather") is None
    assert controller.active_session is first

    scheduler.advance(0.6)
    assert first.state == SessionState.TYPING
    assert controller.submit("weather") is None
    assert [e for e in surface.events if e[0] == "create"] == [e for e in events if e[0] == "create"]

    scheduler.run_until_idle()
    second = controller.submit("weather")
    assert second is not None
    assert second.id == "id-4"


def test_error_then_retry_renders_in_place(make_controller, surface, scheduler):
    resolver = FlakyResolver(failures=1)
    controller = make_controller(resolver)
    session = controller.submit("hello")
    scheduler.run_until_idle()

    assert session.state == SessionState.RETRY_READY
    assert controller.retry_available
    assert (controller.retry_prompt, controller.retry_session_id) == ("hello", "id-2")
    assert surface.retry_available is True
    assert surface.regions["id-2"]["error"] == "Error: scene index unavailable"
    assert not controller.busy

    retried = controller.retry()
    assert retried.id == "id-2"
    assert retried.prompt == "hello"
    assert not controller.retry_available
    assert surface.retry_available is False
    # 再試行ではユーザー発話の領域を作らない
    assert [e for e in surface.events if e[0] == "create"] == [
        ("create", "id-1", "user", "hello"),
        ("create", "id-2", "assistant", ""),
    ]

    scheduler.run_until_idle()
    assert retried.state == SessionState.DONE
    assert surface.regions["id-2"]["text"] == "Hi! How can I help?"
    assert resolver.calls == ["hello", "hello"]


def test_retry_consumes_candidate_once(make_controller, scheduler):
    controller = make_controller(FlakyResolver(failures=2))
    controller.submit("hello")
    scheduler.run_until_idle()

    first_retry = controller.retry()
    assert first_retry is not None
    assert controller.retry() is None  # busy
    scheduler.run_until_idle()

    # 2回目も失敗したので再び再試行できる
    assert controller.retry_available
    second_retry = controller.retry()
    scheduler.run_until_idle()
    assert second_retry.state == SessionState.DONE
    assert controller.retry() is None


def test_retry_without_candidate_is_noop(make_controller, surface):
    controller = make_controller()
    assert controller.retry() is None
    assert surface.events == []


def test_successful_submission_clears_pending_retry(make_controller, surface, scheduler):
    controller = make_controller(FlakyResolver(failures=1))
    controller.submit("hello")
    scheduler.run_until_idle()
    assert controller.retry_available

    controller.submit("weather")
    assert controller.retry_available  # 完了までは保持
    scheduler.run_until_idle()
    assert not controller.retry_available
    assert surface.retry_available is False


def test_retry_cancels_thinking_timer_registered_for_same_id(make_controller, scheduler):
    controller = make_controller(FlakyResolver(failures=1))
    controller.submit("hello")
    scheduler.run_until_idle()

    leftover = scheduler.call_every(0.5, lambda: None)
    controller.thinking_timers["id-2"] = leftover
    controller.retry()
    assert leftover.cancelled
    assert controller.thinking_timers["id-2"] is not leftover


def test_cancel_active_releases_busy_flag(make_controller, surface, scheduler):
    controller = make_controller()
    session = controller.submit("hello")
    scheduler.advance(0.3)

    controller.cancel_active()
    assert session.cancelled
    assert not controller.busy
    assert controller.active_session is None
    assert scheduler.pending() == []

    assert controller.submit("weather") is not None


def test_snapshot_reports_state(make_controller, scheduler):
    controller = make_controller()
    assert controller.snapshot() == {
        "busy": False,
        "active_session_id": None,
        "active_state": None,
        "retry_available": False,
        "retry_session_id": None,
    }
    controller.submit("hello")
    snapshot = controller.snapshot()
    assert snapshot["busy"] is True
    assert snapshot["active_session_id"] == "id-2"
    assert snapshot["active_state"] == SessionState.LOADING
