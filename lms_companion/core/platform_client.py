"""
LMS Platform Client

Endpoint layer over the Session Envelope. Each method maps one backend
call to a small result dataclass; the envelope takes care of tokens,
activity timestamps and 401/403 handling.

Usage:
    client = LMSPlatformClient(envelope)
    duration = await client.get_test_duration(test_id)
    status = await client.update_lesson_status(subtask_id, True, context)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from lms_companion.core.cache import generate_cache_key
from lms_companion.core.envelope import SessionEnvelope

LESSON_STATUS_ENDPOINT = "api/student/lessons/status/"
ACTIVITY_ENDPOINT = "api/student/activity/"
TEST_COMPLETED_STATUSES = ("Test Already Completed", "Completed")


@dataclass
class LessonContext:
    """Where in the curriculum a subtask lives."""

    subject: str = ""
    subject_id: str = ""
    day_number: int | str = ""
    week_number: int | str = ""


@dataclass
class LessonStatus:
    """Server verdict on a subtask completion."""

    status: bool | str | None = None
    message: str | None = None
    incomplete_sub_topics: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LessonStatus":
        return cls(
            status=data.get("status"),
            message=data.get("message"),
            incomplete_sub_topics=list(data.get("incomplete_sub_topics") or []),
        )

    @property
    def affirmed(self) -> bool:
        return self.status is True or self.status == "true"

    @property
    def denied(self) -> bool:
        return self.status is False or self.status == "false"


@dataclass
class DurationResult:
    """Server-authoritative remaining time of a test."""

    time_left: int = 0
    status: str | None = None
    http_status: int = 200

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DurationResult":
        try:
            time_left = max(0, int(float(data.get("time_left") or 0)))
        except (TypeError, ValueError):
            time_left = 0
        return cls(time_left=time_left, status=data.get("status"))

    @property
    def completed(self) -> bool:
        return self.http_status == 500 or self.status in TEST_COMPLETED_STATUSES


class LMSPlatformClient:
    """
    Typed access to the backend endpoints the core depends on.

    Transient failures are raised as httpx exceptions so each caller can
    decide whether to fail open; only track_activity() swallows them.
    """

    def __init__(self, envelope: SessionEnvelope):
        self.envelope = envelope

    @property
    def student_id(self) -> str:
        return self.envelope.student_id()

    # =========================================================================
    # Session
    # =========================================================================

    async def validate_session(self) -> bool:
        return await self.envelope.validate_session()

    async def health_check(self) -> bool:
        """Check whether the backend answers at all."""
        try:
            response = await self.envelope.get(self.envelope.settings.connectivity_check_path)
            return response.is_success
        except httpx.RequestError:
            return False

    # =========================================================================
    # Lessons
    # =========================================================================

    async def update_lesson_status(
        self,
        subtask_id: str,
        status: bool = True,
        context: LessonContext | None = None,
    ) -> LessonStatus | None:
        """
        Report a subtask as completed and return the server verdict.

        Returns None when the backend answers with an empty body.
        """
        context = context or LessonContext()
        identity = self.envelope.identity()
        payload = {
            "student_id": self.student_id,
            "subject": context.subject,
            "subject_id": context.subject_id,
            "day_number": context.day_number,
            "week_number": context.week_number,
            "sub_topic": subtask_id,
            "status": status,
            "batch_id": identity.batch_id,
        }

        response = await self.envelope.post(LESSON_STATUS_ENDPOINT, json=payload)
        response.raise_for_status()
        data = self.envelope.read_json(response)
        if not isinstance(data, dict):
            return None

        logger.debug(f"Lesson status for {subtask_id}: {data.get('status')}")
        return LessonStatus.from_dict(data)

    async def track_activity(self, activity_type: str, subject_id: str = "") -> bool:
        """Record a learner activity event; failures are logged and ignored."""
        try:
            response = await self.envelope.post(
                ACTIVITY_ENDPOINT,
                json={
                    "student_id": self.student_id,
                    "subject_id": subject_id,
                    "activity_type": activity_type,
                },
            )
            return response.is_success
        except httpx.HTTPError as e:
            logger.error(f"Failed to track activity {activity_type}: {e}")
            return False

    # =========================================================================
    # Tests
    # =========================================================================

    async def get_test_duration(self, test_id: str) -> DurationResult:
        response = await self.envelope.patch(
            f"api/student/test/duration/{self.student_id}/{test_id}/"
        )
        if response.status_code == 500:
            logger.warning(f"Duration call for test {test_id} returned 500")
            return DurationResult(http_status=500)
        response.raise_for_status()

        data = self.envelope.read_json(response)
        return DurationResult.from_dict(data if isinstance(data, dict) else {})

    async def submit_test(self, test_id: str) -> bool:
        response = await self.envelope.post(
            f"api/student/test/submit/{self.student_id}/{test_id}/"
        )
        response.raise_for_status()
        logger.info(f"Submitted test {test_id}")
        return True

    # =========================================================================
    # Dashboard
    # =========================================================================

    async def get_dashboard(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Read a dashboard endpoint through the response cache."""
        key = generate_cache_key(self.envelope.url(path), params)

        async def fetch() -> Any:
            response = await self.envelope.get(path, params=params)
            response.raise_for_status()
            return self.envelope.read_json(response)

        return await self.envelope.cache.cached(key, fetch)
