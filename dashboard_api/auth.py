"""
Single-flight token refresh.

All callers that hit a 401 while a refresh is running await the same
``asyncio.Task``; only one refresh request is ever outstanding per
coordinator. Each ApiClient owns its own coordinator, so separate clients
are separate sessions.
"""

import asyncio
import logging
from typing import Callable, Optional

from .errors import DashboardApiError, UnauthenticatedError
from .transport import CoreTransport
from .types import Credentials, PendingRequest, TokenStorage


logger = logging.getLogger("dashboard_api")

IDLE = "idle"
REFRESHING = "refreshing"


class AuthCoordinator:
    """Owns the refresh state machine for one session."""

    def __init__(
        self,
        storage: TokenStorage,
        transport: CoreTransport,
        refresh_path: str = "/auth/token/refresh/",
        on_unauthenticated: Optional[Callable[[UnauthenticatedError], None]] = None,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._refresh_path = refresh_path
        self._on_unauthenticated = on_unauthenticated
        self._inflight: Optional["asyncio.Task[Credentials]"] = None
        # Refresh requests actually sent over the wire
        self.refresh_count = 0
        # Bumped on every session teardown
        self.generation = 0

    @property
    def state(self) -> str:
        return REFRESHING if self._inflight is not None else IDLE

    async def refresh(
        self, failed_token: Optional[str] = None, generation: Optional[int] = None
    ) -> Credentials:
        """
        Obtain fresh credentials, joining an in-flight refresh if there is one.

        Args:
            failed_token: The access token that was rejected. If the store
                already holds a different token, another caller refreshed in
                the meantime and no new refresh is started.
            generation: The session generation the caller started in. A
                caller from a session that was already torn down does not
                tear it down again.

        Raises:
            UnauthenticatedError: No refresh token, or the refresh failed.
                The token store is empty when this is raised.
        """
        task = self._inflight
        if task is None:
            current = self._storage.get()
            if (
                current is not None
                and failed_token is not None
                and current.access_token != failed_token
            ):
                return current
            if current is None or not current.refresh_token:
                error = UnauthenticatedError("No refresh token available")
                self.end_session(error, generation)
                raise error

            # Test-and-set: no await between the check above and this assignment
            task = asyncio.ensure_future(self._run_refresh(current.refresh_token))
            task.add_done_callback(_retrieve_exception)
            self._inflight = task
        else:
            logger.debug("[dashboard_api] joining in-flight token refresh")

        return await asyncio.shield(task)

    async def _run_refresh(self, refresh_token: str) -> Credentials:
        self.refresh_count += 1
        request = PendingRequest(
            method="POST",
            path=self._refresh_path,
            json={"refresh": refresh_token},
            skip_auth=True,
        )
        try:
            try:
                payload = await self._transport.send(request)
                credentials = Credentials.from_token_response(
                    payload if isinstance(payload, dict) else {},
                    previous_refresh=refresh_token,
                )
            except DashboardApiError as exc:
                logger.warning("Token refresh failed: %s", exc.message)
                error = UnauthenticatedError(
                    "Session refresh failed. Please log in again.",
                    {"cause": exc.code},
                )
                self.end_session(error)
                raise error from exc

            self._storage.set(credentials)
            logger.info("Access token refreshed")
            return credentials
        finally:
            self._inflight = None

    def end_session(self, error: UnauthenticatedError, generation: Optional[int] = None) -> bool:
        """
        Clear the token store and notify the unauthenticated hook.

        Returns False without doing anything when ``generation`` belongs to a
        session that has already ended.
        """
        if generation is not None and generation != self.generation:
            return False
        self.generation += 1
        self._storage.clear()
        if self._on_unauthenticated is None:
            return True
        try:
            self._on_unauthenticated(error)
        except Exception:
            logger.exception("on_unauthenticated hook raised")
        return True


def _retrieve_exception(task: "asyncio.Task[Credentials]") -> None:
    # Every waiter may have been cancelled; keep asyncio from warning.
    if not task.cancelled():
        task.exception()
