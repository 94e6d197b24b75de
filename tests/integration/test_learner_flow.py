"""
Integration tests: a learner session end to end against the fake backend,
with every component wired through AppContext and virtual time.
"""

import json

import httpx
import pytest

from lms_companion.core import keys
from lms_companion.core.context import build_context
from lms_companion.core.envelope import SessionState
from lms_companion.core.errors import UnauthorizedError
from lms_companion.core.storage import JsonFileStore, MemoryStore, SessionStores
from lms_companion.study.idle_monitor import IdleState
from lms_companion.study.test_clock import ClockState

LESSON_STATUS = "/api/student/lessons/status/"


def _login_backend(backend):
    backend.add(
        "POST",
        "/api/new-login/",
        json={
            "message": "Successfully Logged In",
            "student_id": "S-100",
            "course_id": "C-7",
            "batch_id": "B-3",
            "access_token": "tok-abc",
        },
    )


class TestSubtaskProgression:
    """Learner at subtask 2 of 5 tries to skip ahead, then completes 2."""

    @pytest.mark.asyncio
    async def test_skip_ahead_denied_then_unlock(self, authenticated, backend):
        ctx = authenticated
        warnings = []
        statuses = iter([{"status": True}, {"status": True}])
        backend.add(
            "POST",
            LESSON_STATUS,
            handler=lambda request: httpx.Response(200, json=next(statuses)),
        )

        gate = ctx.progression_gate(task_id="task-1", on_access_denied=warnings.append)
        gate.set_highest_allowed_index(2)
        gate.current_index = 2

        decision = await gate.navigate_to(4, "sub-4")

        assert decision.allowed is False
        assert warnings == ["You must complete previous subtasks before accessing this one."]
        assert gate.current_index == 2
        assert backend.calls("POST", LESSON_STATUS) == []

        result = await gate.complete_subtask("sub-2", 2, 3)

        assert result.success
        assert gate.highest_allowed_index == 3
        body = json.loads(backend.calls("POST", LESSON_STATUS)[0].content)
        assert body["sub_topic"] == "sub-2"
        assert body["status"] is True

        decision = await gate.navigate_to(3, "sub-3")

        assert decision.allowed
        assert gate.current_index == 3
        assert len(warnings) == 1

    @pytest.mark.asyncio
    async def test_server_denial_shows_message(self, authenticated, backend):
        backend.add("POST", LESSON_STATUS, json={"status": "false", "message": "Submit the MCQ first"})
        warnings = []
        gate = authenticated.progression_gate(task_id="task-1", on_access_denied=warnings.append)
        gate.current_index = 0

        result = await gate.advance("sub-0")

        assert result.success is False
        assert warnings == ["Submit the MCQ first"]
        assert gate.highest_allowed_index == 0
        assert gate.current_index == 0

    @pytest.mark.asyncio
    async def test_backend_down_does_not_block(self, authenticated, backend):
        backend.fail("POST", LESSON_STATUS)
        gate = authenticated.progression_gate(task_id="task-1")
        gate.current_index = 0

        assert (await gate.advance("sub-0")).success
        assert gate.current_index == 1
        assert gate.highest_allowed_index == 0

    @pytest.mark.asyncio
    async def test_proxy_page_does_not_block(self, authenticated, backend):
        backend.add(
            "POST",
            LESSON_STATUS,
            handler=lambda request: httpx.Response(200, text="<html>proxy</html>"),
        )
        warnings = []
        gate = authenticated.progression_gate(task_id="task-1", on_access_denied=warnings.append)
        gate.set_highest_allowed_index(2)

        assert (await gate.complete_subtask("sub-2", 2, 3)).success
        assert (await gate.check_subtask_access("sub-2", 2)).allowed
        assert gate.highest_allowed_index == 2
        assert warnings == []

    @pytest.mark.asyncio
    async def test_rejected_token_ends_session(self, authenticated, backend):
        backend.add("POST", LESSON_STATUS, status=401)
        gate = authenticated.progression_gate(task_id="task-1")
        gate.set_highest_allowed_index(2)

        with pytest.raises(UnauthorizedError):
            await gate.complete_subtask("sub-2", 2, 3)

        assert authenticated.cache.size() == 0
        assert not authenticated.envelope.has_session_data()
        assert authenticated.navigator.current_route == "/"


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_login_idle_and_timeout(self, context, backend, scheduler):
        _login_backend(backend)
        backend.add("GET", "/api/logout/S-100/SESSION_TIMEOUT", json={})
        monitor = context.idle_monitor()

        await context.envelope.login("ada@example.com", "provider-tok")
        context.navigator.navigate("/Dashboard")

        assert context.envelope.state == SessionState.AUTHENTICATED
        assert monitor.state == IdleState.RUNNING

        scheduler.advance(2 * 60 + 60)
        await scheduler.drain()

        assert monitor.state == IdleState.EXPIRED
        assert context.envelope.state == SessionState.ANONYMOUS
        assert context.envelope.access_token is None
        assert context.navigator.current_route == "/"
        assert backend.calls("GET", "/api/logout/S-100/SESSION_TIMEOUT")[0].headers["Authorization"] == "Bearer tok-abc"
        monitor.close()

    @pytest.mark.asyncio
    async def test_restart_restores_session(self, settings, scheduler, backend, tmp_path):
        _login_backend(backend)
        backend.add("GET", "/api/validate-session/", json={"authorized": True})
        durable_path = tmp_path / "durable.json"

        async with build_context(
            settings,
            stores=SessionStores(session=MemoryStore(), durable=JsonFileStore(durable_path)),
            scheduler=scheduler,
            transport=backend.transport,
        ) as first:
            await first.envelope.login("ada@example.com", "provider-tok")

        scheduler.advance(30)

        async with build_context(
            settings,
            stores=SessionStores(session=MemoryStore(), durable=JsonFileStore(durable_path)),
            scheduler=scheduler,
            transport=backend.transport,
        ) as second:
            monitor = second.idle_monitor()

            assert await second.envelope.restore_session() is True

            assert second.navigator.current_route == "/Dashboard"
            assert second.envelope.student_id() == "S-100"
            assert second.stores.session.get_item(keys.SESSION_ACCESS_TOKEN) == "tok-abc"
            assert monitor.state == IdleState.RUNNING
            monitor.close()

    @pytest.mark.asyncio
    async def test_dashboard_cache_dropped_on_logout(self, authenticated, backend):
        path = "/api/studentdashboard/mycourses/S-100"
        backend.add("GET", path, json={"courses": ["SQL"]})
        backend.add("GET", "/api/logout/S-100/", json={})

        await authenticated.client.get_dashboard(path)
        assert authenticated.cache.size() == 1

        await authenticated.envelope.logout()

        assert authenticated.cache.size() == 0
        assert authenticated.navigator.current_route == "/"


class TestTimedTest:
    @pytest.mark.asyncio
    async def test_test_runs_out(self, authenticated, backend, scheduler):
        ctx = authenticated
        backend.add("PATCH", "/api/student/test/duration/S-100/T-1/", json={"time_left": 5})
        backend.add("POST", "/api/student/test/submit/S-100/T-1/", json={})
        ctx.stores.session.set_item("userAnswer_q1", "C")
        ctx.navigator.navigate("/mcq-temp")

        clock = ctx.test_clock("T-1")
        await clock.seed()
        clock.start()
        for _ in range(5):
            scheduler.advance(1)
        await scheduler.drain()

        assert clock.state == ClockState.EXPIRED
        assert len(backend.calls("POST", "/api/student/test/submit/S-100/T-1/")) == 1
        assert ctx.stores.session.get_item("timer") == "0"
        assert ctx.vault.decrypt(ctx.stores.session.get_item("testDuration")) == "0"
        assert "userAnswer_q1" not in ctx.stores.session
        assert ctx.navigator.current_route == "/test-report"
        assert ctx.envelope.has_session_data()
