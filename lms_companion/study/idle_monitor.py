"""
Idle/Inactivity Monitor.

    IDLE --start()--> RUNNING --window elapses--> WARNING --countdown hits 0--> EXPIRED
                        ^                            |
                        +---------- activity --------+

Login routes are exempt: entering one tears every timer down. Every restart
cancels the previous timers before scheduling new ones, so there is never
more than one inactivity window and one countdown alive.

Alongside the user-facing window, a backend validation timer asks
``api/validate-session/`` once a whole inactivity window passes without any
successful backend call. Every successful call pushes it back; while the
warning is showing it only rechecks.
"""

from __future__ import annotations

from enum import Enum

import httpx
from loguru import logger

from lms_companion.config import Settings
from lms_companion.core.envelope import SessionEnvelope
from lms_companion.core.errors import UnauthorizedError
from lms_companion.core.navigation import ROOT_ROUTE, NavigationEvent, Navigator, is_login_route
from lms_companion.core.scheduler import Scheduler, TimerHandle

ACTIVITY_EVENTS = ("mousemove", "keypress", "scroll", "click", "videotimeactivity")

# Delay before checking again when validation falls due during a warning
VALIDATION_RECHECK_SECONDS = 60


class IdleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WARNING = "warning"
    EXPIRED = "expired"


class IdleMonitor:
    def __init__(
        self,
        settings: Settings,
        envelope: SessionEnvelope,
        navigator: Navigator,
        scheduler: Scheduler,
    ):
        self.settings = settings
        self.envelope = envelope
        self.navigator = navigator
        self.scheduler = scheduler

        self.state = IdleState.IDLE
        self.warning_visible = False
        self.remaining_seconds = settings.logout_warning_seconds

        self._window: TimerHandle | None = None
        self._countdown: TimerHandle | None = None
        self._validation: TimerHandle | None = None
        self._validation_in_flight = False
        self._unsubscribe_route = navigator.subscribe(self._on_route_change)
        self._unsubscribe_calls = envelope.subscribe_backend_calls(self._on_backend_call)

    @property
    def active_timers(self) -> int:
        return sum(1 for handle in (self._window, self._countdown) if handle is not None)

    @property
    def validation_scheduled(self) -> bool:
        return self._validation is not None

    def _on_login_route(self) -> bool:
        return is_login_route(self.navigator.current_route, self.settings)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """Begin tracking if the learner is on an app page with a live session."""
        if self._on_login_route() or not self.envelope.has_session_data():
            return False
        self._restart_window()
        self._schedule_validation()
        return True

    def stop(self) -> None:
        self._teardown()
        self._cancel_validation()
        self.state = IdleState.IDLE

    def close(self) -> None:
        self.stop()
        self._unsubscribe_route()
        self._unsubscribe_calls()

    def _cancel_timers(self) -> None:
        if self._window is not None:
            self._window.cancel()
            self._window = None
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _teardown(self) -> None:
        self._cancel_timers()
        self.warning_visible = False
        self.remaining_seconds = self.settings.logout_warning_seconds

    def _restart_window(self) -> None:
        self._teardown()
        self.state = IdleState.RUNNING
        self._window = self.scheduler.call_later(
            self.settings.inactivity_timeout_seconds, self._on_window_elapsed
        )

    def _on_route_change(self, event: NavigationEvent) -> None:
        if is_login_route(event.path, self.settings):
            self._teardown()
            self._cancel_validation()
            if self.state != IdleState.EXPIRED:
                self.state = IdleState.IDLE
        elif self.state in (IdleState.IDLE, IdleState.EXPIRED):
            self.start()

    # =========================================================================
    # Events
    # =========================================================================

    def record_activity(self, event: str = "mousemove") -> bool:
        """
        Register a user interaction.

        Returns True when the interaction restarted the inactivity window.
        """
        if event not in ACTIVITY_EVENTS:
            raise ValueError(f"Unknown activity event: {event}")
        if self.state not in (IdleState.RUNNING, IdleState.WARNING) or self._on_login_route():
            return False

        dismissed_warning = self.state == IdleState.WARNING
        self._restart_window()
        self.envelope.touch_activity()

        if dismissed_warning:
            self.scheduler.spawn(self._revalidate())
        return True

    def _on_window_elapsed(self) -> None:
        self._window = None
        self.state = IdleState.WARNING
        self.warning_visible = True
        self.remaining_seconds = self.settings.logout_warning_seconds
        logger.info(f"No activity, logging out in {self.remaining_seconds}s")
        self._countdown = self.scheduler.call_every(1, self._tick)

    def _tick(self) -> None:
        if self.remaining_seconds <= 1:
            self.remaining_seconds = 0
            self._expire()
        else:
            self.remaining_seconds -= 1

    def _expire(self) -> None:
        self._cancel_timers()
        self._cancel_validation()
        self.warning_visible = False
        self.state = IdleState.EXPIRED
        logger.info("Session expired due to inactivity")
        self.scheduler.spawn(self._logout(self.envelope.student_id()))

    async def _logout(self, student_id: str) -> None:
        await self.envelope.perform_logout(student_id, is_inactivity_logout=True)
        self.navigator.hard_navigate(ROOT_ROUTE)

    async def _revalidate(self) -> None:
        try:
            await self.envelope.validate_session()
        except UnauthorizedError:
            logger.info("Session rejected while dismissing idle warning")
        except httpx.HTTPError as e:
            logger.debug(f"Session revalidation failed: {e}")

    # =========================================================================
    # Backend validation timer
    # =========================================================================

    def _cancel_validation(self) -> None:
        if self._validation is not None:
            self._validation.cancel()
            self._validation = None

    def _schedule_validation(self, delay: float | None = None) -> None:
        self._cancel_validation()
        if delay is None:
            delay = self.settings.inactivity_timeout_seconds
        self._validation = self.scheduler.call_later(delay, self._on_validation_due)

    def _on_backend_call(self) -> None:
        if self.state in (IdleState.RUNNING, IdleState.WARNING):
            self._schedule_validation()

    def _on_validation_due(self) -> None:
        self._validation = None
        if self.warning_visible:
            self._schedule_validation(VALIDATION_RECHECK_SECONDS)
            return
        self.scheduler.spawn(self._validate_with_backend())

    async def _validate_with_backend(self) -> None:
        if self._validation_in_flight:
            return
        self._validation_in_flight = True
        student_id = self.envelope.student_id()
        try:
            authorized = await self.envelope.validate_session()
        except UnauthorizedError:
            logger.info("Session rejected by periodic validation")
            return
        except httpx.HTTPError as e:
            logger.warning(f"Periodic session validation failed, keeping session: {e}")
            if self.state in (IdleState.RUNNING, IdleState.WARNING):
                self._schedule_validation()
            return
        finally:
            self._validation_in_flight = False

        if not authorized:
            logger.info("Session no longer authorized, logging out")
            await self.envelope.perform_logout(student_id, force_logout=True)
            self.navigator.hard_navigate(ROOT_ROUTE)
