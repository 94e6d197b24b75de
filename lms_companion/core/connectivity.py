"""
Connectivity Monitor.

Polls a cheap static path on the backend and keeps an online/offline flag.
A check that times out leaves the flag alone and is retried on the next
tick; any other failure marks the backend offline.
"""

from __future__ import annotations

from typing import Callable

import httpx
from loguru import logger

from lms_companion.config import Settings
from lms_companion.core.scheduler import Scheduler, TimerHandle

StatusListener = Callable[[bool], None]


class ConnectivityMonitor:
    def __init__(
        self,
        settings: Settings,
        scheduler: Scheduler,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.scheduler = scheduler
        self.is_online = True
        self._transport = transport
        self._checking = False
        self._timer: TimerHandle | None = None
        self._listeners: list[StatusListener] = []

    @property
    def check_url(self) -> str:
        return self.settings.backend_url + self.settings.connectivity_check_path.lstrip("/")

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_online(self, online: bool) -> None:
        if online == self.is_online:
            return
        self.is_online = online
        logger.info(f"Backend is {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            listener(online)

    async def check(self) -> bool:
        """Run one check; a check already in flight makes this a no-op."""
        if self._checking:
            return self.is_online

        self._checking = True
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.connectivity_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(self.check_url, headers={"Cache-Control": "no-cache"})
            self._set_online(response.is_success)
        except httpx.TimeoutException:
            logger.debug("Connectivity check timed out, retrying on next tick")
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e}")
            self._set_online(False)
        finally:
            self._checking = False

        return self.is_online

    def start(self) -> None:
        self.stop()
        self.scheduler.spawn(self.check())
        self._timer = self.scheduler.call_every(
            self.settings.connectivity_poll_interval_seconds,
            lambda: self.scheduler.spawn(self.check()),
        )

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
