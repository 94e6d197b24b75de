"""
Application context.

Wires one set of collaborators for a running client: stores, vault, cache,
navigator, scheduler, envelope and platform client. The CLI builds one per
invocation; tests build one with in-memory stores, a VirtualScheduler and
an httpx.MockTransport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import httpx

from lms_companion.config import Settings, get_settings
from lms_companion.core.cache import ResponseCache
from lms_companion.core.connectivity import ConnectivityMonitor
from lms_companion.core.envelope import SessionEnvelope
from lms_companion.core.navigation import Navigator
from lms_companion.core.platform_client import LessonContext, LessonStatus, LMSPlatformClient
from lms_companion.core.scheduler import LoopScheduler, Scheduler
from lms_companion.core.storage import JsonFileStore, MemoryStore, SessionStores
from lms_companion.core.vault import CredentialVault
from lms_companion.study.idle_monitor import IdleMonitor
from lms_companion.study.progression import SubtaskProgressionGate
from lms_companion.study.test_clock import TimedTestClock


@dataclass
class AppContext:
    """Everything a front-end session needs, already connected."""

    settings: Settings
    stores: SessionStores
    vault: CredentialVault
    cache: ResponseCache
    navigator: Navigator
    scheduler: Scheduler
    envelope: SessionEnvelope
    client: LMSPlatformClient
    connectivity: ConnectivityMonitor

    async def __aenter__(self) -> "AppContext":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.cache.stop_sweeper()
        self.connectivity.stop()
        await self.scheduler.drain()
        await self.envelope.aclose()

    def start_background(self) -> None:
        """Start the cache sweeper and the connectivity poller."""
        self.cache.start_sweeper(self.scheduler, self.settings.cache_sweep_interval_seconds)
        self.connectivity.start()

    def progression_gate(
        self,
        task_id: str | None = None,
        lesson: LessonContext | None = None,
        on_access_denied: Callable[[str], None] | None = None,
    ) -> SubtaskProgressionGate:
        async def update_status(subtask_id: str, status: bool) -> LessonStatus | None:
            return await self.client.update_lesson_status(subtask_id, status, lesson)

        return SubtaskProgressionGate(
            self.stores.session,
            update_status,
            task_id=task_id,
            on_access_denied=on_access_denied,
        )

    def idle_monitor(self) -> IdleMonitor:
        return IdleMonitor(self.settings, self.envelope, self.navigator, self.scheduler)

    def test_clock(self, test_id: str) -> TimedTestClock:
        return TimedTestClock(
            self.settings,
            self.client,
            self.stores.session,
            self.vault,
            self.navigator,
            self.scheduler,
            test_id,
        )


def build_context(
    settings: Settings | None = None,
    stores: SessionStores | None = None,
    scheduler: Scheduler | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AppContext:
    """
    Build an AppContext.

    Args:
        settings: Defaults to get_settings()
        stores: Defaults to an in-memory session store plus the durable
            JSON file under ``settings.state_dir``
        scheduler: Defaults to LoopScheduler
        transport: httpx transport for every backend call (MockTransport in tests)
    """
    settings = settings or get_settings()
    if stores is None:
        stores = SessionStores(
            session=MemoryStore(),
            durable=JsonFileStore(settings.durable_store_path),
        )
    scheduler = scheduler or LoopScheduler()

    vault = CredentialVault.from_settings(settings)
    cache = ResponseCache(
        scheduler.now,
        default_ttl=settings.cache_ttl_seconds,
        patterns=settings.cache_dashboard_patterns,
    )
    navigator = Navigator()
    envelope = SessionEnvelope(settings, stores, vault, cache, navigator, scheduler, transport=transport)

    return AppContext(
        settings=settings,
        stores=stores,
        vault=vault,
        cache=cache,
        navigator=navigator,
        scheduler=scheduler,
        envelope=envelope,
        client=LMSPlatformClient(envelope),
        connectivity=ConnectivityMonitor(settings, scheduler, transport=transport),
    )
