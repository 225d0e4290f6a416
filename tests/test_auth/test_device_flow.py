"""Tests for the OAuth2 Device Authorization Grant client (RFC 8628)."""

from __future__ import annotations

import os
import signal
import threading
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from nimbus.auth.device_flow import (
    DEVICE_CODE_GRANT_TYPE,
    GITHUB_DEVICE_CODE_URL,
    GITHUB_TOKEN_URL,
    CancellationToken,
    DeviceAuthFlow,
    DeviceFlowState,
    PollStatus,
    cancel_on_interrupt,
)
from nimbus.exceptions import (
    DeniedError,
    DeviceFlowCancelledError,
    DeviceFlowError,
    ExpiredError,
    NotInitiatedError,
    UnknownDeviceFlowError,
)


DEVICE_CODE_BODY = {
    "device_code": "dev-123",
    "user_code": "ABCD-EFGH",
    "verification_uri": "https://github.com/login/device",
    "expires_in": 900,
    "interval": 5,
}


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float, token: CancellationToken) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeServer:
    """Serves the device-code endpoint and a scripted sequence of token replies."""

    def __init__(self, clock: FakeClock, token_replies: list[Any], device_body: Any = None) -> None:
        self.clock = clock
        self.token_replies = list(token_replies)
        self.device_body = DEVICE_CODE_BODY if device_body is None else device_body
        self.token_calls: list[float] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == GITHUB_DEVICE_CODE_URL:
            return httpx.Response(200, json=self.device_body)
        if url == GITHUB_TOKEN_URL:
            self.token_calls.append(self.clock.now)
            reply = self.token_replies.pop(0)
            if isinstance(reply, httpx.Response):
                return reply
            if isinstance(reply, Exception):
                raise reply
            return httpx.Response(200, json=reply)
        return httpx.Response(404)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_flow(clock: FakeClock) -> Callable[..., tuple[DeviceAuthFlow, FakeServer]]:
    flows: list[DeviceAuthFlow] = []

    def _make(token_replies: list[Any] = (), device_body: Any = None) -> tuple[DeviceAuthFlow, FakeServer]:
        server = FakeServer(clock, list(token_replies), device_body)
        client = httpx.Client(transport=httpx.MockTransport(server))
        flow = DeviceAuthFlow(http_client=client, clock=clock, sleep=clock.sleep)
        flows.append(flow)
        return flow, server

    yield _make
    for flow in flows:
        flow._http.close()


def _form(request: httpx.Request) -> dict[str, list[str]]:
    return parse_qs(request.content.decode())


# -------------------------------------------------------------------------
# initiate()
# -------------------------------------------------------------------------


class TestInitiate:
    def test_returns_code_and_stores_session(self, make_flow, clock: FakeClock) -> None:
        flow, server = make_flow()
        response = flow.initiate()

        assert response.user_code == "ABCD-EFGH"
        assert response.verification_uri == "https://github.com/login/device"
        assert response.expires_in == 900
        assert response.interval == 5
        assert flow.state == DeviceFlowState.AWAITING_AUTHORIZATION
        assert flow.session.expires_at == clock.now + 900

    def test_request_shape(self, make_flow) -> None:
        flow, server = make_flow()
        flow.initiate()

        request = server.requests[0]
        assert request.method == "POST"
        assert request.headers["Accept"] == "application/json"
        form = _form(request)
        assert form["client_id"] == ["Ov23liPzN7sAjwDsqUcx"]
        assert form["scope"] == ["read:user user:email"]

    def test_interval_floor(self, make_flow) -> None:
        flow, _ = make_flow(device_body={**DEVICE_CODE_BODY, "interval": 1})
        assert flow.initiate().interval == 5

    def test_missing_interval_defaults_to_five(self, make_flow) -> None:
        body = {k: v for k, v in DEVICE_CODE_BODY.items() if k != "interval"}
        flow, _ = make_flow(device_body=body)
        assert flow.initiate().interval == 5

    def test_larger_server_interval_kept(self, make_flow) -> None:
        flow, _ = make_flow(device_body={**DEVICE_CODE_BODY, "interval": 10})
        assert flow.initiate().interval == 10

    def test_missing_device_code(self, make_flow) -> None:
        flow, _ = make_flow(device_body={"user_code": "X"})
        with pytest.raises(DeviceFlowError, match="device_code"):
            flow.initiate()

    def test_http_error(self) -> None:
        client = httpx.Client(
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))
        )
        flow = DeviceAuthFlow(http_client=client)
        with pytest.raises(DeviceFlowError, match="500"):
            flow.initiate()
        client.close()

    def test_transport_error(self) -> None:
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = httpx.Client(transport=httpx.MockTransport(_fail))
        with pytest.raises(DeviceFlowError, match="unreachable"):
            DeviceAuthFlow(http_client=client).initiate()
        client.close()

    def test_non_json_body(self) -> None:
        client = httpx.Client(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(DeviceFlowError, match="JSON"):
            DeviceAuthFlow(http_client=client).initiate()
        client.close()


# -------------------------------------------------------------------------
# poll()
# -------------------------------------------------------------------------


class TestPoll:
    def test_not_initiated(self, make_flow) -> None:
        flow, server = make_flow()
        with pytest.raises(NotInitiatedError):
            flow.poll()
        assert server.requests == []

    def test_authorized(self, make_flow) -> None:
        flow, server = make_flow([{"access_token": "gho_tok", "token_type": "bearer"}])
        flow.initiate()
        result = flow.poll()

        assert result.status == PollStatus.AUTHORIZED
        assert result.access_token == "gho_tok"
        assert flow.state == DeviceFlowState.AUTHORIZED
        form = _form(server.requests[-1])
        assert form["grant_type"] == [DEVICE_CODE_GRANT_TYPE]
        assert form["device_code"] == ["dev-123"]

    def test_pending(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "authorization_pending"}])
        flow.initiate()
        result = flow.poll()
        assert result.status == PollStatus.PENDING
        assert result.access_token is None

    def test_expired_locally_makes_no_request(self, make_flow, clock: FakeClock) -> None:
        flow, server = make_flow([{"access_token": "never"}])
        flow.initiate()
        clock.now += 901

        with pytest.raises(ExpiredError):
            flow.poll()
        assert server.token_calls == []
        assert flow.state == DeviceFlowState.EXPIRED

    def test_slow_down_increases_interval(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "slow_down"}, {"error": "slow_down"}])
        flow.initiate()

        assert flow.poll().status == PollStatus.SLOW_DOWN
        assert flow.interval == 10
        assert flow.poll().status == PollStatus.SLOW_DOWN
        assert flow.interval == 15

    def test_slow_down_spaces_next_request(self, make_flow) -> None:
        flow, server = make_flow([{"error": "slow_down"}, {"error": "authorization_pending"}])
        flow.initiate()
        flow.poll()
        flow.poll()
        assert server.token_calls[1] - server.token_calls[0] >= 10

    def test_consecutive_polls_respect_interval(self, make_flow, clock: FakeClock) -> None:
        flow, server = make_flow(
            [{"error": "authorization_pending"}, {"error": "authorization_pending"}]
        )
        response = flow.initiate()
        assert (response.interval, response.expires_in) == (5, 900)

        first = flow.poll()
        second = flow.poll()

        assert first.access_token is None and second.access_token is None
        assert len(server.token_calls) == 2
        assert server.token_calls[1] - server.token_calls[0] >= 5

    def test_no_wait_when_interval_already_elapsed(self, make_flow, clock: FakeClock) -> None:
        flow, _ = make_flow(
            [{"error": "authorization_pending"}, {"error": "authorization_pending"}]
        )
        flow.initiate()
        flow.poll()
        clock.now += 7
        flow.poll()
        assert clock.sleeps == []

    def test_access_denied(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "access_denied"}])
        flow.initiate()
        with pytest.raises(DeniedError):
            flow.poll()
        assert flow.state == DeviceFlowState.DENIED

    def test_server_expired_token(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "expired_token"}])
        flow.initiate()
        with pytest.raises(ExpiredError):
            flow.poll()

    def test_unknown_error_uses_description(self, make_flow) -> None:
        flow, _ = make_flow(
            [{"error": "incorrect_client_credentials", "error_description": "Bad client id"}]
        )
        flow.initiate()
        with pytest.raises(UnknownDeviceFlowError, match="Bad client id"):
            flow.poll()
        assert flow.state == DeviceFlowState.FAILED

    def test_unknown_error_falls_back_to_code(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "unsupported_grant_type"}])
        flow.initiate()
        with pytest.raises(UnknownDeviceFlowError, match="unsupported_grant_type"):
            flow.poll()

    def test_empty_body_is_unknown_error(self, make_flow) -> None:
        flow, _ = make_flow([{}])
        flow.initiate()
        with pytest.raises(UnknownDeviceFlowError, match="Unknown authorization error"):
            flow.poll()

    def test_rfc_style_400_error_body(self, make_flow) -> None:
        flow, _ = make_flow([httpx.Response(400, json={"error": "authorization_pending"})])
        flow.initiate()
        assert flow.poll().status == PollStatus.PENDING

    def test_transport_error(self, make_flow) -> None:
        flow, _ = make_flow([httpx.ReadTimeout("timed out")])
        flow.initiate()
        with pytest.raises(DeviceFlowError, match="timed out"):
            flow.poll()

    def test_cancelled_token_blocks_request(self, make_flow) -> None:
        flow, server = make_flow([{"error": "authorization_pending"}])
        flow.initiate()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(DeviceFlowCancelledError):
            flow.poll(token)
        assert server.token_calls == []


# -------------------------------------------------------------------------
# wait_for_authorization()
# -------------------------------------------------------------------------


class TestWaitForAuthorization:
    def test_polls_until_token(self, make_flow, clock: FakeClock) -> None:
        flow, server = make_flow(
            [
                {"error": "authorization_pending"},
                {"error": "slow_down"},
                {"access_token": "gho_done"},
            ]
        )
        flow.initiate()
        seen: list[PollStatus] = []

        token = flow.wait_for_authorization(on_poll=lambda r: seen.append(r.status))

        assert token == "gho_done"
        assert seen == [PollStatus.PENDING, PollStatus.SLOW_DOWN]
        gaps = [b - a for a, b in zip(server.token_calls, server.token_calls[1:])]
        assert gaps[0] >= 5 and gaps[1] >= 10

    def test_propagates_denied(self, make_flow) -> None:
        flow, _ = make_flow([{"error": "authorization_pending"}, {"error": "access_denied"}])
        flow.initiate()
        with pytest.raises(DeniedError):
            flow.wait_for_authorization()

    def test_expires_while_waiting(self, make_flow, clock: FakeClock) -> None:
        pending = [{"error": "authorization_pending"}] * 500
        flow, server = make_flow(pending)
        flow.initiate()
        with pytest.raises(ExpiredError):
            flow.wait_for_authorization()
        assert all(t <= flow.session.expires_at for t in server.token_calls)

    def test_requires_initiate(self, make_flow) -> None:
        flow, _ = make_flow()
        with pytest.raises(NotInitiatedError):
            flow.wait_for_authorization()

    def test_cancel_before_start(self, make_flow) -> None:
        flow, server = make_flow([{"access_token": "x"}])
        flow.initiate()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(DeviceFlowCancelledError):
            flow.wait_for_authorization(cancel=token)
        assert server.token_calls == []
        assert flow.state == DeviceFlowState.FAILED

    def test_cancel_from_on_poll_stops_before_next_request(self, make_flow) -> None:
        flow, server = make_flow([{"error": "authorization_pending"}] * 3)
        flow.initiate()
        token = CancellationToken()

        with pytest.raises(DeviceFlowCancelledError):
            flow.wait_for_authorization(on_poll=lambda r: token.cancel(), cancel=token)
        assert len(server.token_calls) == 1

    def test_real_sleep_is_interrupted_by_cancel(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GITHUB_DEVICE_CODE_URL:
                return httpx.Response(200, json={**DEVICE_CODE_BODY, "interval": 30})
            return httpx.Response(200, json={"error": "authorization_pending"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        flow = DeviceAuthFlow(http_client=client)
        flow.initiate()
        token = CancellationToken()
        timer = threading.Timer(0.1, token.cancel)
        timer.start()
        try:
            with pytest.raises(DeviceFlowCancelledError):
                flow.wait_for_authorization(cancel=token)
        finally:
            timer.cancel()
            client.close()


class TestLifecycle:
    def test_context_manager_closes_owned_client(self) -> None:
        with DeviceAuthFlow() as flow:
            client = flow._http
        assert client.is_closed

    def test_injected_client_left_open(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with DeviceAuthFlow(http_client=client):
            pass
        assert not client.is_closed
        client.close()

    def test_cancellation_token(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        assert token.wait(0) is False
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        assert token.wait(10) is True
        with pytest.raises(DeviceFlowCancelledError):
            token.raise_if_cancelled()


@pytest.mark.skipif(os.name != "posix", reason="POSIX signals")
class TestCancelOnInterrupt:
    def test_sigint_cancels_token_and_restores_handler(self) -> None:
        before = signal.getsignal(signal.SIGINT)

        with cancel_on_interrupt(CancellationToken()) as token:
            signal.raise_signal(signal.SIGINT)
            assert token.cancelled

        assert signal.getsignal(signal.SIGINT) is before

    def test_off_main_thread_is_passthrough(self) -> None:
        seen: list[bool] = []

        def worker() -> None:
            with cancel_on_interrupt(CancellationToken()) as token:
                seen.append(token.cancelled)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        assert seen == [False]
