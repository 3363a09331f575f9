"""OAuth2 Device Authorization Grant (:rfc:`8628`) against GitHub.

Flow:
    1. POST to ``/login/device/code`` to obtain ``device_code`` +
       ``user_code`` (:meth:`DeviceFlowController.request_code`).
    2. The caller shows "Go to {verification_uri} and enter code:
       {user_code}".
    3. Poll ``/login/oauth/access_token`` every ``interval`` seconds until
       the user authorizes, denies, or the code expires
       (:meth:`DeviceFlowController.poll`).

Session status moves ``REQUESTED -> POLLING -> AUTHORIZED | DENIED | ERROR``.
A failed device-code request raises; every polling outcome is reported
through the return value instead, because a denied or expired login is an
expected, user-recoverable condition.

Polling stops early when the caller sets the ``cancel_event`` or when the
server-provided ``expires_in`` has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from copilot_auth.auth.exchange import client_scope
from copilot_auth.config import (
    CLIENT_ID,
    DEVICE_CODE_GRANT_TYPE,
    DEVICE_FLOW_SCOPE,
    DEVICE_FLOW_USER_AGENT,
)
from copilot_auth.exceptions import ConnectionError_, DeviceFlowError
from copilot_auth.models import (
    DeviceAccessTokenResponse,
    DeviceAuthorizationSession,
    DeviceCodeResponse,
    DeviceFlowStatus,
    Endpoints,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_PENDING = "authorization_pending"
SLOW_DOWN = "slow_down"
SLOW_DOWN_INCREMENT = 5

Sleep = Callable[[float], Awaitable[None]]

_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": DEVICE_FLOW_USER_AGENT,
}


class DeviceFlowController:
    """Request a device code and poll until the user completes the browser step.

    Args:
        endpoints: GitHub endpoints for the configured domain.
        http_client: Optional shared :class:`httpx.AsyncClient`.
        sleep: Coroutine used between polls. Defaults to :func:`asyncio.sleep`.
        clock: Monotonic clock used for the ``expires_in`` deadline.
    """

    def __init__(
        self,
        endpoints: Endpoints,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._endpoints = endpoints
        self._http_client = http_client
        self._sleep = sleep
        self._clock = clock

    async def request_code(self) -> DeviceAuthorizationSession:
        """POST the device-code endpoint and start a new session.

        Returns:
            A session in ``REQUESTED`` state.

        Raises:
            DeviceFlowError: On a non-2xx status or an unparseable body.
            ConnectionError_: On transport failures.
        """
        payload = {"client_id": CLIENT_ID, "scope": DEVICE_FLOW_SCOPE}
        try:
            async with client_scope(self._http_client) as client:
                response = await client.post(
                    self._endpoints.device_code_url, json=payload, headers=_HEADERS
                )
        except httpx.HTTPError as exc:
            raise ConnectionError_(f"Device flow initiation failed: {exc}") from exc

        if not response.is_success:
            raise DeviceFlowError(
                f"Device flow initiation failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = DeviceCodeResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise DeviceFlowError(
                f"Unexpected device code response: {response.text}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        logger.debug("Device flow initiated. User code: %s", data.user_code)
        return DeviceAuthorizationSession(
            device_code=data.device_code,
            user_code=data.user_code,
            verification_uri=data.verification_uri,
            poll_interval_seconds=max(data.interval, 1),
            expires_in=data.expires_in,
        )

    async def poll(
        self,
        session: DeviceAuthorizationSession,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """Poll the access-token endpoint until the session reaches a terminal state.

        Each cycle waits ``poll_interval_seconds`` and then asks for the
        token. ``authorization_pending`` and bodies carrying neither a
        token nor an error keep polling. ``slow_down`` does not end the
        session either: as :rfc:`8628` section 3.5 requires, the interval
        grows by ``SLOW_DOWN_INCREMENT`` (5) seconds for this and every
        later cycle. Any other error code ends the session as ``DENIED``;
        an HTTP or transport failure ends it as ``ERROR``.

        A session that is already ``AUTHORIZED``, ``DENIED`` or ``ERROR``
        is left untouched and no request is made.

        Args:
            session: A session returned by :meth:`request_code`. Its
                ``status`` and ``error`` fields are updated in place.
            cancel_event: Setting this event stops polling at the next
                opportunity (``ERROR``, reason ``"cancelled"``).

        Returns:
            The OAuth access token on ``AUTHORIZED``, otherwise ``None``.
        """
        if session.status.is_terminal:
            logger.debug("Device flow already %s; not polling", session.status.value)
            return None
        session.status = DeviceFlowStatus.POLLING
        interval = session.poll_interval_seconds
        deadline = (
            self._clock() + session.expires_in if session.expires_in else None
        )
        payload = {
            "client_id": CLIENT_ID,
            "device_code": session.device_code,
            "grant_type": DEVICE_CODE_GRANT_TYPE,
        }

        while True:
            await self._pause(interval, cancel_event)

            if cancel_event is not None and cancel_event.is_set():
                return self._fail(session, DeviceFlowStatus.ERROR, "cancelled")
            if deadline is not None and self._clock() >= deadline:
                return self._fail(session, DeviceFlowStatus.ERROR, "expired_token")

            try:
                async with client_scope(self._http_client) as client:
                    response = await client.post(
                        self._endpoints.access_token_url, json=payload, headers=_HEADERS
                    )
            except httpx.HTTPError as exc:
                return self._fail(session, DeviceFlowStatus.ERROR, f"request failed: {exc}")

            if not response.is_success:
                return self._fail(
                    session, DeviceFlowStatus.ERROR, f"HTTP {response.status_code}"
                )

            try:
                data = DeviceAccessTokenResponse.model_validate_json(response.content)
            except ValidationError:
                return self._fail(session, DeviceFlowStatus.ERROR, "malformed response")

            if data.access_token:
                session.status = DeviceFlowStatus.AUTHORIZED
                session.error = None
                return data.access_token

            if data.error == AUTHORIZATION_PENDING:
                continue
            if data.error == SLOW_DOWN:
                interval += SLOW_DOWN_INCREMENT
                logger.debug("Server asked to slow down; polling every %ss", interval)
                continue
            if data.error:
                logger.debug(
                    "Device flow error: %s - %s", data.error, data.error_description
                )
                return self._fail(session, DeviceFlowStatus.DENIED, data.error)

            # Neither a token nor an error: unknown state, keep polling.

    async def _pause(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep for *seconds*, waking early if *cancel_event* is set."""
        if cancel_event is None:
            await self._sleep(seconds)
            return
        if cancel_event.is_set():
            return
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Also runs when the polling task itself is cancelled.
            for task in (sleeper, waiter):
                task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

    @staticmethod
    def _fail(
        session: DeviceAuthorizationSession, status: DeviceFlowStatus, reason: str
    ) -> None:
        logger.debug("Device flow ended as %s: %s", status.value, reason)
        session.status = status
        session.error = reason
        return None
