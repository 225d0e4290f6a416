"""OAuth2 Device Authorization Grant (:rfc:`8628`) client.

For headless terminals (SSH, Docker, CI) where no local redirect listener
can be opened. Works like ``gh auth login``.

Flow:
    1. :meth:`DeviceAuthFlow.initiate` POSTs to the device-code endpoint and
       returns the ``user_code`` and ``verification_uri`` to show the user.
    2. :meth:`DeviceAuthFlow.poll` asks the token endpoint once whether the
       user has finished. ``authorization_pending`` and ``slow_down`` are
       non-terminal; ``access_denied`` and ``expired_token`` raise.
    3. :meth:`DeviceAuthFlow.wait_for_authorization` loops over ``poll``,
       sleeping ``interval`` seconds in between, until a token arrives, the
       flow fails, or a :class:`CancellationToken` fires.

Polling follows the server's ``interval`` and ``slow_down`` signals only.
There is no exponential backoff and no jitter: the token endpoint expects
exactly this cadence.

The flow never persists anything. Callers store the returned token (see
:func:`nimbus.auth.github.complete_github_auth`).

See Also:
    :mod:`nimbus.commands.login` -- the wizard step that drives this flow.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Sequence

import httpx

from nimbus.exceptions import (
    DeniedError,
    DeviceFlowCancelledError,
    DeviceFlowError,
    ExpiredError,
    NotInitiatedError,
    UnknownDeviceFlowError,
)
from nimbus.models import DeviceCodeResponse, DeviceCodeSession

logger = logging.getLogger(__name__)

# Public identifier of the nimbus GitHub OAuth app.
GITHUB_CLIENT_ID = "Ov23liPzN7sAjwDsqUcx"
GITHUB_DEVICE_CODE_URL = "https://github.com/login/device/code"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEFAULT_SCOPES = ("read:user", "user:email")

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

MIN_POLL_INTERVAL = 5.0
"""Floor for the polling interval, in seconds (also the default)."""

SLOW_DOWN_INCREMENT = 5.0
"""Seconds added to the interval on every ``slow_down`` response."""

_DEFAULT_EXPIRES_IN = 900


class DeviceFlowState(str, Enum):
    IDLE = "idle"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    DENIED = "denied"
    FAILED = "failed"


class PollStatus(str, Enum):
    """Outcome of a single non-failing poll."""

    PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class PollResult:
    status: PollStatus
    access_token: Optional[str] = None

    @property
    def authorized(self) -> bool:
        return self.status == PollStatus.AUTHORIZED


class CancellationToken:
    """Cooperative cancellation signal for the polling loop.

    Backed by a :class:`threading.Event`, so :meth:`cancel` may be called
    from a signal handler or another thread and wakes any :meth:`wait`
    that is in progress.

    Example::

        token = CancellationToken()
        flow.wait_for_authorization(cancel=token)  # token.cancel() elsewhere
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` early if cancelled."""
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DeviceFlowCancelledError("Authorization cancelled")


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[CancellationToken]:
    """Turn Ctrl-C into ``token.cancel()`` for the duration of the block.

    The previous SIGINT handler is restored on exit. Outside the main thread
    signal handlers cannot be installed and the block runs unchanged.

    Example::

        with cancel_on_interrupt(CancellationToken()) as token:
            flow.wait_for_authorization(cancel=token)
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum: int, frame: Any) -> None:
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


Sleeper = Callable[[float, CancellationToken], Any]
"""``sleep(seconds, token)`` -- must return early once *token* is cancelled."""


def _interruptible_sleep(seconds: float, token: CancellationToken) -> None:
    token.wait(seconds)


class DeviceAuthFlow:
    """Drive one device authorization from code request to bearer token.

    States: ``IDLE -> AWAITING_AUTHORIZATION -> {AUTHORIZED | EXPIRED |
    DENIED | FAILED}``; see :attr:`state`.

    Args:
        client_id: OAuth client identifier.
        scopes: Scopes requested with the device code.
        device_code_url: Device authorization endpoint.
        token_url: Token endpoint polled for the access token.
        http_client: Optional :class:`httpx.Client`. When omitted the flow
            creates one and closes it in :meth:`close`.
        clock: Monotonic time source in seconds. Expiry and the interval
            between polls are measured on it.
        sleep: ``sleep(seconds, token)`` used between polls. Defaults to
            waiting on the cancellation token, so a cancel cuts the sleep
            short.
        timeout: Per-request timeout for the internally created client.
    """

    def __init__(
        self,
        client_id: str = GITHUB_CLIENT_ID,
        scopes: Sequence[str] = DEFAULT_SCOPES,
        device_code_url: str = GITHUB_DEVICE_CODE_URL,
        token_url: str = GITHUB_TOKEN_URL,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Sleeper] = None,
        timeout: float = 30.0,
    ) -> None:
        self._client_id = client_id
        self._scopes = list(scopes)
        self._device_code_url = device_code_url
        self._token_url = token_url
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client(timeout=timeout)
        self._clock = clock
        self._sleep: Sleeper = sleep or _interruptible_sleep

        self._session: Optional[DeviceCodeSession] = None
        self._state = DeviceFlowState.IDLE
        self._last_poll_at: Optional[float] = None

    def __enter__(self) -> DeviceAuthFlow:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this flow created it."""
        if self._owns_client:
            self._http.close()

    @property
    def state(self) -> DeviceFlowState:
        return self._state

    @property
    def session(self) -> Optional[DeviceCodeSession]:
        return self._session

    @property
    def interval(self) -> float:
        """Current polling interval in seconds."""
        if self._session is None:
            return MIN_POLL_INTERVAL
        return self._session.interval

    # ------------------------------------------------------------------ #
    # Protocol
    # ------------------------------------------------------------------ #

    def initiate(self) -> DeviceCodeResponse:
        """Request a device code and start a new session.

        Returns:
            The code and URI to show the user, plus the lifetime and the
            effective polling interval (never below five seconds).

        Raises:
            DeviceFlowError: On HTTP or network errors, a non-JSON body, or
                a response missing ``device_code`` / ``user_code``.
        """
        data: dict[str, str] = {"client_id": self._client_id}
        if self._scopes:
            data["scope"] = " ".join(self._scopes)

        try:
            response = self._http.post(
                self._device_code_url,
                data=data,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise DeviceFlowError(
                f"Device authorization request failed with status "
                f"{exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DeviceFlowError(f"Device authorization request failed: {exc}") from exc
        except ValueError as exc:
            raise DeviceFlowError("Device authorization response was not valid JSON") from exc

        if not isinstance(payload, dict) or "device_code" not in payload:
            raise DeviceFlowError("Device authorization response missing 'device_code'")
        if "user_code" not in payload:
            raise DeviceFlowError("Device authorization response missing 'user_code'")

        try:
            expires_in = int(payload.get("expires_in") or _DEFAULT_EXPIRES_IN)
            interval = max(float(payload.get("interval") or MIN_POLL_INTERVAL), MIN_POLL_INTERVAL)
        except (TypeError, ValueError) as exc:
            raise DeviceFlowError(f"Device authorization response is malformed: {exc}") from exc

        verification_uri = str(
            payload.get("verification_uri") or payload.get("verification_url") or ""
        )

        self._session = DeviceCodeSession(
            device_code=str(payload["device_code"]),
            user_code=str(payload["user_code"]),
            verification_uri=verification_uri,
            interval=interval,
            expires_at=self._clock() + expires_in,
        )
        self._state = DeviceFlowState.AWAITING_AUTHORIZATION
        self._last_poll_at = None
        logger.debug(
            "Device code issued, expires in %ss, polling every %ss", expires_in, interval
        )

        return DeviceCodeResponse(
            user_code=self._session.user_code,
            verification_uri=verification_uri,
            expires_in=expires_in,
            interval=interval,
        )

    def poll(self, cancel: Optional[CancellationToken] = None) -> PollResult:
        """Ask the token endpoint once whether the user has authorized.

        Expiry is checked before anything else, so an expired session never
        costs a request. If the previous poll was less than :attr:`interval`
        seconds ago, this call first sleeps for the remainder.

        Args:
            cancel: Optional token; cancelling it interrupts that wait.

        Returns:
            ``AUTHORIZED`` with the access token, or ``PENDING`` /
            ``SLOW_DOWN`` when the caller should wait and retry.

        Raises:
            NotInitiatedError: If :meth:`initiate` has not succeeded.
            ExpiredError: If the device code expired (locally or per server).
            DeniedError: If the user denied access.
            DeviceFlowCancelledError: If *cancel* fired during the wait.
            UnknownDeviceFlowError: For any other server error code.
            DeviceFlowError: On network failures or unreadable responses.
        """
        session = self._require_session()
        self._check_expiry(session)

        token = cancel or CancellationToken()
        if self._last_poll_at is not None:
            remaining = self._last_poll_at + session.interval - self._clock()
            if remaining > 0:
                self._sleep(remaining, token)
                token.raise_if_cancelled()
                self._check_expiry(session)
        token.raise_if_cancelled()

        self._last_poll_at = self._clock()
        try:
            response = self._http.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "device_code": session.device_code,
                    "grant_type": DEVICE_CODE_GRANT_TYPE,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._state = DeviceFlowState.FAILED
            raise DeviceFlowError(f"Token polling failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            self._state = DeviceFlowState.FAILED
            raise DeviceFlowError(
                f"Token polling failed with status {response.status_code}: {response.text}"
            )

        return self._interpret(session, payload)

    def wait_for_authorization(
        self,
        on_poll: Optional[Callable[[PollResult], Any]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Poll until the user authorizes, then return the access token.

        Args:
            on_poll: Called after every non-terminal poll (for spinners and
                similar feedback).
            cancel: Checked before every poll and honoured mid-sleep. Once
                cancelled, no further request is sent.

        Returns:
            The bearer access token.

        Raises:
            DeviceFlowCancelledError: If *cancel* fires.
            DeviceFlowError: Any terminal error from :meth:`poll`.
        """
        self._require_session()
        token = cancel or CancellationToken()

        while True:
            if token.cancelled:
                self._state = DeviceFlowState.FAILED
                raise DeviceFlowCancelledError("Authorization cancelled")

            try:
                result = self.poll(token)
            except DeviceFlowCancelledError:
                self._state = DeviceFlowState.FAILED
                raise

            if result.authorized and result.access_token:
                return result.access_token

            if on_poll is not None:
                on_poll(result)
            self._sleep(self.interval, token)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _require_session(self) -> DeviceCodeSession:
        if self._session is None:
            raise NotInitiatedError(
                "Device code not requested. Call initiate() before polling."
            )
        return self._session

    def _check_expiry(self, session: DeviceCodeSession) -> None:
        if self._clock() > session.expires_at:
            self._state = DeviceFlowState.EXPIRED
            raise ExpiredError("Device code expired. Please start the login process again.")

    def _interpret(self, session: DeviceCodeSession, payload: dict[str, Any]) -> PollResult:
        """Map a token-endpoint body onto a poll result or an error (:rfc:`8628` 3.5)."""
        access_token = payload.get("access_token")
        if access_token:
            self._state = DeviceFlowState.AUTHORIZED
            return PollResult(PollStatus.AUTHORIZED, str(access_token))

        error = payload.get("error") or ""

        if error == "authorization_pending":
            return PollResult(PollStatus.PENDING)
        if error == "slow_down":
            session.interval += SLOW_DOWN_INCREMENT
            logger.debug("Server asked to slow down, interval now %ss", session.interval)
            return PollResult(PollStatus.SLOW_DOWN)
        if error == "expired_token":
            self._state = DeviceFlowState.EXPIRED
            raise ExpiredError("Device code expired. Please start the login process again.")
        if error == "access_denied":
            self._state = DeviceFlowState.DENIED
            raise DeniedError("Authorization was denied by the user.")

        self._state = DeviceFlowState.FAILED
        raise UnknownDeviceFlowError(
            payload.get("error_description") or error or "Unknown authorization error"
        )
