"""
Subtask Progression Gate.

Tracks the highest subtask index a learner has unlocked inside the active
task and decides whether a navigation is allowed. The local check always
runs first; the backend is only asked about indices the gate already
allows, and a backend denial overrides local permission.

Usage:
    gate = SubtaskProgressionGate(stores.session, update_status, task_id="task-7")
    decision = await gate.navigate_to(3, "subtask-3")
    if not decision.allowed:
        show_modal(decision.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
from loguru import logger

from lms_companion.core.platform_client import LessonStatus
from lms_companion.core.storage import KeyValueStore

STORAGE_KEY = "highestAllowedSubtask"
MAX_SUBTASK_INDEX = 1000

LOCKED_MESSAGE = "You must complete previous subtasks before accessing this one."
ACCESS_DENIED_MESSAGE = "This subtask cannot be accessed at this time."
NOT_COMPLETED_MESSAGE = "This subtask cannot be completed yet."
INVALID_INDICES_MESSAGE = "Invalid subtask indices."

LessonStatusCall = Callable[[str, bool], Awaitable[LessonStatus | None]]


@dataclass
class AccessDecision:
    allowed: bool
    message: str | None = None


@dataclass
class CompletionResult:
    success: bool
    message: str | None = None


def _is_index(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class SubtaskProgressionGate:
    """Monotonic unlock state for the subtasks of one task."""

    def __init__(
        self,
        store: KeyValueStore,
        update_lesson_status: LessonStatusCall,
        task_id: str | None = None,
        on_access_denied: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.update_lesson_status = update_lesson_status
        self.task_id = task_id
        self.on_access_denied = on_access_denied
        self.current_index: int | None = None

    @property
    def storage_key(self) -> str:
        if self.task_id:
            return f"{STORAGE_KEY}_{self.task_id}"
        return STORAGE_KEY

    # =========================================================================
    # Highest allowed index
    # =========================================================================

    @property
    def highest_allowed_index(self) -> int:
        stored = self.store.get_item(self.storage_key)
        if not stored:
            return 0
        try:
            parsed = int(stored)
        except ValueError:
            logger.warning(f"Discarding unreadable {self.storage_key}={stored!r}")
            self.store.remove_item(self.storage_key)
            return 0
        return max(0, min(MAX_SUBTASK_INDEX, parsed))

    def set_highest_allowed_index(self, index: int) -> None:
        """Raise the unlocked ceiling; a lower value than the current one is ignored."""
        if not _is_index(index):
            return
        valid = max(0, min(MAX_SUBTASK_INDEX, index))
        if valid >= self.highest_allowed_index:
            self.store.set_item(self.storage_key, str(valid))

    def initialize_highest_allowed(self, index: int) -> None:
        if _is_index(index) and index > self.highest_allowed_index:
            self.set_highest_allowed_index(index)

    def clear_restrictions(self) -> None:
        self.store.remove_item(self.storage_key)

    def select_task(self, task_id: str | None) -> None:
        """Switch the active task; progression starts over at index 0."""
        if task_id == self.task_id:
            return
        logger.debug(f"Switching task {self.task_id} -> {task_id}")
        self.clear_restrictions()
        self.task_id = task_id
        self.clear_restrictions()
        self.current_index = None

    def is_accessible(self, index: int, current_index: int | None = None) -> bool:
        if not _is_index(index) or index < 0:
            return False
        if current_index is not None and index == current_index:
            return True
        return index <= self.highest_allowed_index

    # =========================================================================
    # Backend-confirmed transitions
    # =========================================================================

    def _deny(self, message: str) -> None:
        if self.on_access_denied is not None:
            self.on_access_denied(message)

    async def check_subtask_access(
        self,
        subtask_id: str,
        index: int,
        status: bool = False,
        current_index: int | None = None,
    ) -> AccessDecision:
        if not self.is_accessible(index, current_index):
            self._deny(LOCKED_MESSAGE)
            return AccessDecision(allowed=False, message=LOCKED_MESSAGE)

        try:
            response = await self.update_lesson_status(subtask_id, status)
        except httpx.HTTPError as e:
            logger.warning(f"Access check for {subtask_id} failed, allowing: {e}")
            return AccessDecision(allowed=True)

        if response is not None and response.denied:
            message = response.message or ACCESS_DENIED_MESSAGE
            self._deny(message)
            return AccessDecision(allowed=False, message=message)

        return AccessDecision(allowed=True)

    async def complete_subtask(
        self,
        current_subtask_id: str,
        current_index: int,
        next_index: int,
    ) -> CompletionResult:
        """
        Ask the backend to confirm ``current_subtask_id`` and unlock ``next_index``.

        A transient backend failure reports success without unlocking
        ``next_index``; only a backend confirmation raises the ceiling.
        """
        if not _is_index(current_index) or not _is_index(next_index) or next_index < 0:
            return CompletionResult(success=False, message=INVALID_INDICES_MESSAGE)

        try:
            response = await self.update_lesson_status(current_subtask_id, True)
        except httpx.HTTPError as e:
            logger.warning(f"Completion check for {current_subtask_id} failed, allowing: {e}")
            return CompletionResult(success=True)

        if response is not None and response.denied:
            if next_index <= self.highest_allowed_index:
                return CompletionResult(success=True)
            message = response.message or NOT_COMPLETED_MESSAGE
            self._deny(message)
            return CompletionResult(success=False, message=message)

        self.set_highest_allowed_index(next_index)
        logger.debug(f"Unlocked subtask {next_index}")
        return CompletionResult(success=True)

    # =========================================================================
    # Navigation
    # =========================================================================

    async def navigate_to(self, index: int, subtask_id: str, status: bool = False) -> AccessDecision:
        """Move to ``index`` if the gate and the backend allow it."""
        decision = await self.check_subtask_access(subtask_id, index, status, self.current_index)
        if decision.allowed:
            self.current_index = index
        return decision

    async def advance(self, current_subtask_id: str) -> CompletionResult:
        """Complete the current subtask and move to the next one."""
        if self.current_index is None:
            return CompletionResult(success=False, message=INVALID_INDICES_MESSAGE)

        next_index = self.current_index + 1
        result = await self.complete_subtask(current_subtask_id, self.current_index, next_index)
        if result.success:
            self.current_index = next_index
        return result
