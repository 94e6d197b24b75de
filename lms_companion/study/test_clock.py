"""
Timed-Test Clock.

A per-test countdown seeded from the backend's remaining time:

    IDLE --seed()--> SEEDED --start()--> COUNTING --0--> EXPIRED
                        |                   |
                        +--- completed -----+--> ABANDONED (redirect to /test)

Every tick re-persists the remaining seconds in plain ("timer") and
vault-encrypted ("testDuration") form so a restart resumes without waiting
on the network. The backend always wins: a duration call reporting the
test as completed abandons the local countdown.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx
from loguru import logger

from lms_companion.config import Settings
from lms_companion.core.errors import UnauthorizedError
from lms_companion.core.navigation import TEST_REPORT_ROUTE, TEST_ROUTE, Navigator
from lms_companion.core.platform_client import DurationResult, LMSPlatformClient
from lms_companion.core.scheduler import Scheduler, TimerHandle
from lms_companion.core.storage import KeyValueStore
from lms_companion.core.vault import CredentialVault
from lms_companion.study.test_session import (
    TEST_DURATION_KEY,
    TIMER_KEY,
    cleanup_specific_session_data,
)


class ClockState(str, Enum):
    IDLE = "idle"
    SEEDED = "seeded"
    COUNTING = "counting"
    EXPIRED = "expired"
    ABANDONED = "abandoned"


def format_time(seconds: int) -> tuple[str, str, str]:
    """Split ``seconds`` into zero-padded (hours, minutes, seconds)."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}", f"{minutes:02d}", f"{secs:02d}"


class TimedTestClock:
    def __init__(
        self,
        settings: Settings,
        client: LMSPlatformClient,
        store: KeyValueStore,
        vault: CredentialVault,
        navigator: Navigator,
        scheduler: Scheduler,
        test_id: str,
    ):
        self.settings = settings
        self.client = client
        self.store = store
        self.vault = vault
        self.navigator = navigator
        self.scheduler = scheduler
        self.test_id = test_id

        self.state = ClockState.IDLE
        self.seconds_remaining = 0
        self.submit_task: asyncio.Task | None = None

        self._ticker: TimerHandle | None = None
        self._resync: TimerHandle | None = None

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self) -> None:
        value = str(self.seconds_remaining)
        self.store.set_item(TIMER_KEY, value)
        self.store.set_item(TEST_DURATION_KEY, self.vault.encrypt(value))

    def load_persisted_seconds(self) -> int | None:
        """Remaining seconds saved by a previous run, or None."""
        for raw in (self.vault.decrypt(self.store.get_item(TEST_DURATION_KEY)), self.store.get_item(TIMER_KEY)):
            if not raw:
                continue
            try:
                return max(0, int(raw))
            except ValueError:
                continue
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def seed(self) -> ClockState:
        """Fetch the remaining time from the backend and persist it."""
        try:
            duration = await self.client.get_test_duration(self.test_id)
        except httpx.HTTPError as e:
            persisted = self.load_persisted_seconds()
            if persisted is None:
                logger.warning(f"Could not seed test {self.test_id} and nothing is persisted: {e}")
                return self.state
            logger.warning(f"Could not seed test {self.test_id}, resuming at {persisted}s: {e}")
            self._apply(persisted)
            return self.state

        if duration.completed:
            self._abandon(duration)
            return self.state

        self._apply(duration.time_left)
        return self.state

    def _apply(self, seconds: int) -> None:
        self.seconds_remaining = max(0, seconds)
        self._persist()
        self.state = ClockState.SEEDED
        if self.seconds_remaining == 0:
            self._expire()

    def start(self) -> bool:
        if self.state != ClockState.SEEDED:
            return False

        self.state = ClockState.COUNTING
        self._ticker = self.scheduler.call_every(1, self._tick)
        interval = self.settings.test_resync_interval_seconds
        if interval > 0:
            self._resync = self.scheduler.call_every(
                interval, lambda: self.scheduler.spawn(self.refresh())
            )
        return True

    def stop(self) -> None:
        """Cancel local timers. A submit already in flight keeps running."""
        self._cancel_timers()
        if self.state in (ClockState.SEEDED, ClockState.COUNTING):
            self.state = ClockState.IDLE

    def _cancel_timers(self) -> None:
        for handle in (self._ticker, self._resync):
            if handle is not None:
                handle.cancel()
        self._ticker = None
        self._resync = None

    # =========================================================================
    # Countdown
    # =========================================================================

    def _tick(self) -> None:
        if self.state != ClockState.COUNTING:
            return
        self.seconds_remaining = max(0, self.seconds_remaining - 1)
        self._persist()
        if self.seconds_remaining == 0:
            self._expire()

    async def refresh(self) -> None:
        """Resync with the backend's remaining time."""
        if self.state != ClockState.COUNTING:
            return
        try:
            duration = await self.client.get_test_duration(self.test_id)
        except httpx.HTTPError as e:
            logger.debug(f"Duration resync for test {self.test_id} failed: {e}")
            return

        if self.state != ClockState.COUNTING:
            return
        if duration.completed:
            self._abandon(duration)
            return

        self.seconds_remaining = duration.time_left
        self._persist()
        if self.seconds_remaining == 0:
            self._expire()

    def _abandon(self, duration: DurationResult) -> None:
        self._cancel_timers()
        self.state = ClockState.ABANDONED
        logger.info(
            f"Test {self.test_id} already completed "
            f"(status={duration.status}, http={duration.http_status}), leaving"
        )
        self.navigator.navigate(TEST_ROUTE, replace=True)

    def _expire(self) -> None:
        self._cancel_timers()
        self.seconds_remaining = 0
        self._persist()
        self.state = ClockState.EXPIRED
        logger.info(f"Time is up for test {self.test_id}, submitting")
        if self.submit_task is None:
            self.submit_task = self.scheduler.spawn(self._submit())

    async def _submit(self) -> None:
        try:
            await self.client.submit_test(self.test_id)
        except UnauthorizedError:
            logger.warning(f"Submit of test {self.test_id} rejected, session ended")
            return
        except httpx.HTTPError as e:
            logger.error(f"Failed to submit test {self.test_id}: {e}")
        else:
            cleanup_specific_session_data(
                self.store, ["testData", "questions", "userData"], self.test_id
            )
        self.navigator.hard_navigate(TEST_REPORT_ROUTE)
