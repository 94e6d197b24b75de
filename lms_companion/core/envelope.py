"""
Session Envelope.

Every backend call made by lms-companion goes through one httpx.AsyncClient
whose event hooks implement the session rules:

- request hook: attach ``Authorization: Bearer <token>`` when the durable
  store holds a token (tokenless calls still go out)
- response hook: HTTP 200 refreshes the activity timestamp and notifies
  backend-call listeners; 401/403 wipes
  the session, clears the cache, hard-navigates to "/" and raises
  UnauthorizedError

The envelope also owns the session lifecycle:

    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED -> LOGGING_OUT -> ANONYMOUS

Usage:
    async with SessionEnvelope(settings, stores, vault, cache, navigator, scheduler) as env:
        if not await env.restore_session():
            await env.login(email, provider_token, profile)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable

import httpx
from loguru import logger

from lms_companion.config import Settings
from lms_companion.core import keys
from lms_companion.core.cache import ResponseCache
from lms_companion.core.errors import LoginError, UnauthorizedError
from lms_companion.core.identity import IdentityRecord
from lms_companion.core.navigation import DASHBOARD_ROUTE, ROOT_ROUTE, Navigator
from lms_companion.core.scheduler import Scheduler
from lms_companion.core.storage import SessionStores
from lms_companion.core.vault import CredentialVault

LOGIN_ENDPOINT = "api/new-login/"
VALIDATE_SESSION_ENDPOINT = "api/validate-session/"
LOGIN_SUCCESS_MESSAGE = "Successfully Logged In"
UNAUTHORIZED_STATUSES = (401, 403)


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOGGING_OUT = "logging_out"


class SessionEnvelope:
    """Authenticated transport plus session lifecycle."""

    def __init__(
        self,
        settings: Settings,
        stores: SessionStores,
        vault: CredentialVault,
        cache: ResponseCache,
        navigator: Navigator,
        scheduler: Scheduler,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.stores = stores
        self.vault = vault
        self.cache = cache
        self.navigator = navigator
        self.scheduler = scheduler
        self.state = SessionState.ANONYMOUS
        self._call_listeners: list[Callable[[], None]] = []

        self._client = httpx.AsyncClient(
            timeout=settings.request_timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
            event_hooks={
                "request": [self._on_request],
                "response": [self._on_response],
            },
        )

    async def __aenter__(self) -> "SessionEnvelope":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def subscribe_backend_calls(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` after every successful backend response."""
        self._call_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._call_listeners:
                self._call_listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.debug(f"Session state {self.state.value} -> {state.value}")
        self.state = state

    # =========================================================================
    # Hooks
    # =========================================================================

    async def _on_request(self, request: httpx.Request) -> None:
        token = self.access_token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    async def _on_response(self, response: httpx.Response) -> None:
        if response.status_code == 200:
            self.touch_activity()
            for listener in list(self._call_listeners):
                listener()
        elif response.status_code in UNAUTHORIZED_STATUSES:
            url = str(response.request.url)
            logger.warning(f"Received {response.status_code} from {url}, ending session")
            self._destroy_session()
            self.navigator.hard_navigate(ROOT_ROUTE)
            raise UnauthorizedError(response.status_code, url)

    def _destroy_session(self) -> None:
        self.stores.session.clear()
        self.stores.durable.remove_items(keys.DURABLE_SESSION_KEYS)
        self.cache.clear()
        self._set_state(SessionState.ANONYMOUS)

    # =========================================================================
    # Requests
    # =========================================================================

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return self.settings.backend_url + path.lstrip("/")

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request through the envelope; ``json`` bodies may be encrypted."""
        url = self.url(path)
        if kwargs.get("json") is not None:
            kwargs["json"] = self.vault.conditional_encrypt_json(kwargs["json"], url)
        return await self._client.request(method, url, **kwargs)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    def read_json(self, response: httpx.Response) -> Any:
        """
        Decode a response body, unwrapping encrypted payloads.

        Raises:
            httpx.DecodingError: The body is not JSON (proxy or maintenance page)
        """
        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise httpx.DecodingError(
                f"Response from {response.request.url} is not JSON: {e}",
                request=response.request,
            ) from e
        return self.vault.conditional_decrypt_json(data, str(response.request.url))

    # =========================================================================
    # Session data
    # =========================================================================

    @property
    def access_token(self) -> str | None:
        return self.stores.durable.get_item(keys.DURABLE_ACCESS_TOKEN)

    def student_id(self) -> str:
        """Decrypted student id, "" when no identity is available."""
        student_id = self.vault.decrypt(self.stores.session.get_item(keys.SESSION_STUDENT_ID))
        if not student_id:
            student_id = self.vault.decrypt(self.stores.durable.get_item(keys.DURABLE_STUDENT_ID))
        return student_id

    def identity(self) -> IdentityRecord:
        return IdentityRecord.read(self.stores.durable, self.vault)

    def has_session_data(self) -> bool:
        return bool(self.access_token) and bool(self.student_id())

    def touch_activity(self) -> None:
        self.stores.durable.set_item(keys.DURABLE_LAST_ACTIVITY, str(self.scheduler.now_ms()))

    def _read_ms(self, key: str) -> int:
        try:
            return int(self.stores.durable.get_item(key) or 0)
        except ValueError:
            return 0

    # =========================================================================
    # Login
    # =========================================================================

    async def login(
        self,
        email: str,
        provider_token: str,
        profile: dict[str, Any] | None = None,
    ) -> IdentityRecord:
        """
        Exchange an identity-provider token for a backend session.

        Args:
            email: Email reported by the identity provider
            provider_token: Access token issued by the identity provider
            profile: Optional ``name`` / ``picture`` from the provider profile

        Raises:
            LoginError: The backend did not recognise the learner
        """
        profile = profile or {}
        self._set_state(SessionState.AUTHENTICATING)

        try:
            response = await self.post(
                LOGIN_ENDPOINT,
                json={"email": email, "access_token": provider_token},
            )
            response.raise_for_status()
            data = self.read_json(response) or {}
        except httpx.HTTPStatusError as e:
            self._set_state(SessionState.ANONYMOUS)
            logger.error(f"Login failed: {e}")
            raise LoginError("User not found") from e
        except (httpx.RequestError, UnauthorizedError):
            self._set_state(SessionState.ANONYMOUS)
            raise

        if not isinstance(data, dict) or data.get("message") != LOGIN_SUCCESS_MESSAGE:
            self._set_state(SessionState.ANONYMOUS)
            raise LoginError("User not found")

        identity = IdentityRecord.from_dict({
            "student_id": data.get("student_id"),
            "course_id": data.get("course_id"),
            "batch_id": data.get("batch_id"),
            "email": email,
            "name": profile.get("name", ""),
            "picture": profile.get("picture", ""),
        })
        identity.write(self.stores, self.vault)

        token = data.get("access_token")
        if token:
            self.stores.durable.set_item(keys.DURABLE_ACCESS_TOKEN, token)
            self.stores.session.set_item(keys.SESSION_ACCESS_TOKEN, token)

        self.stores.durable.set_item(keys.DURABLE_TIMESTAMP, str(self.scheduler.now_ms()))
        self.touch_activity()
        self._set_state(SessionState.AUTHENTICATED)
        logger.info("Logged in")
        return identity

    async def validate_session(self) -> bool:
        """Ask the backend whether the stored token is still valid."""
        response = await self.get(VALIDATE_SESSION_ENDPOINT)
        response.raise_for_status()
        data = self.read_json(response)
        return isinstance(data, dict) and bool(data.get("authorized"))

    # =========================================================================
    # Restore
    # =========================================================================

    def _stored_session_is_fresh(self) -> bool:
        now = self.scheduler.now_ms()
        logged_in_at = self._read_ms(keys.DURABLE_TIMESTAMP)
        last_activity = self._read_ms(keys.DURABLE_LAST_ACTIVITY)

        return (
            now - logged_in_at < self.settings.session_max_age_seconds * 1000
            and now - last_activity <= self.settings.inactivity_timeout_seconds * 1000
            and last_activity > 0
        )

    async def restore_session(self) -> bool:
        """
        Re-establish a session from the durable store without a new login.

        Returns True when the learner is authenticated afterwards. Transient
        failures keep the stored session for a later attempt; only an explicit
        unauthorized answer destroys it.
        """
        if not self.access_token:
            return False

        if not self._stored_session_is_fresh():
            logger.info("Stored session is past its age or inactivity limit, discarding it")
            self.stores.durable.remove_items(keys.DURABLE_SESSION_KEYS)
            return False

        student_id = self.student_id()
        self._set_state(SessionState.AUTHENTICATING)

        try:
            authorized = await self.validate_session()
        except UnauthorizedError:
            await self.perform_logout(student_id, force_logout=True)
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Could not validate stored session, keeping it: {e}")
            self._set_state(SessionState.ANONYMOUS)
            return False

        if not authorized:
            logger.info("Stored session rejected by backend")
            await self.perform_logout(student_id, force_logout=True)
            return False

        IdentityRecord.copy_durable_to_session(self.stores)
        self.stores.session.set_item(keys.SESSION_ACCESS_TOKEN, self.access_token or "")
        self.touch_activity()
        self._set_state(SessionState.AUTHENTICATED)
        self.navigator.navigate(DASHBOARD_ROUTE)
        logger.info("Session restored")
        return True

    # =========================================================================
    # Logout
    # =========================================================================

    def logout_url(self, student_id: str, is_inactivity_logout: bool = False, force_logout: bool = False) -> str:
        if is_inactivity_logout:
            suffix = "SESSION_TIMEOUT"
        elif force_logout:
            suffix = "FORCE_LOGOUT"
        else:
            suffix = ""
        return self.url(f"api/logout/{student_id}/{suffix}")

    async def perform_logout(
        self,
        student_id: str,
        is_inactivity_logout: bool = False,
        force_logout: bool = False,
    ) -> None:
        """
        Tell the backend the learner left, then wipe local session state.

        The backend call is best effort. Local state is cleared whatever
        its outcome.
        """
        self._set_state(SessionState.LOGGING_OUT)
        url = self.logout_url(student_id, is_inactivity_logout, force_logout)

        try:
            if self.access_token:
                await self.get(url)
            else:
                logger.warning("No access token found, skipping logout call")
        except (httpx.HTTPError, UnauthorizedError) as e:
            logger.error(f"Logout call failed: {e}")
        finally:
            self._destroy_session()
            logger.info("Logged out")

    async def logout(self, force: bool = False) -> None:
        await self.perform_logout(self.student_id(), force_logout=force)
        self.navigator.hard_navigate(ROOT_ROUTE)
