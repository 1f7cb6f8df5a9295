# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the pinverify test suite.

Provides a scripted in-memory verification server (served through
``httpx.MockTransport``), signed-response factories, a client
environment pointing at the fake endpoint, and a recording event sink.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio

from pinverify.config import RESPONSE_SIGNATURE_HEADER
from pinverify.verify.environment import ClientEnvironment
from pinverify.verify.events import EventSink
from pinverify.verify.services import ServiceBundle
from pinverify.verify.session import VerifySession
from pinverify.verify.transport import TransportClient

APP_ID = "app-0001"
SECRET = "shared-secret-for-tests"
DEVICE_ID = "device-abc-123"
BASE_URL = "https://verify.test/sdk/"
BASE_PATH = "/sdk/"

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


# =========================================================================
# Signed responses
# =========================================================================

def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def signed_reply(
    payload: Dict[str, Any],
    secret: str = SECRET,
    timestamp: Optional[int] = None,
    signature: Optional[str] = None,
    sign: bool = True,
    status_code: int = 200,
) -> httpx.Response:
    """Build a service response the way the server signs it.

    The body's ``timestamp`` defaults to now; the signature header is
    MD5(body + secret) unless overridden or ``sign`` is False.
    """
    data = dict(payload)
    data.setdefault("timestamp", str(int(time.time()) if timestamp is None else timestamp))
    body = json.dumps(data)
    headers = {"Content-Type": "application/json"}
    if sign:
        headers[RESPONSE_SIGNATURE_HEADER] = signature or md5_hex(body + secret)
    return httpx.Response(status_code, content=body.encode("utf-8"), headers=headers)


def token_reply(token: str = "tok-1", **kwargs: Any) -> httpx.Response:
    return signed_reply({"result_code": 0, "result_message": "OK", "token": token}, **kwargs)


def status_reply(user_status: str, result_code: int = 0, **kwargs: Any) -> httpx.Response:
    return signed_reply(
        {"result_code": result_code, "result_message": "OK", "user_status": user_status}, **kwargs
    )


def error_reply(result_code: int, message: str = "rejected", **kwargs: Any) -> httpx.Response:
    return signed_reply({"result_code": result_code, "result_message": message}, **kwargs)


# =========================================================================
# Scripted server
# =========================================================================

class ScriptedServer:
    """In-memory stand-in for the verification service.

    Replies are queued per method path (``token/json``, ``verify/json``,
    ...) and consumed in order.  A reply may be a response, an exception
    to raise, or a callable taking the request.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, List[Reply]] = defaultdict(list)
        self.requests: List[httpx.Request] = []

    def script(self, method: str, *replies: Reply) -> "ScriptedServer":
        self.routes[method].extend(replies)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.url.path[len(BASE_PATH):]
        queue = self.routes.get(method)
        if not queue:
            raise AssertionError(f"Unexpected call to {method}")
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def calls(self, method: Optional[str] = None) -> int:
        if method is None:
            return len(self.requests)
        return sum(1 for r in self.requests if r.url.path == BASE_PATH + method)

    def params(self, method: str, index: int = -1) -> Dict[str, str]:
        matching = [r for r in self.requests if r.url.path == BASE_PATH + method]
        return dict(matching[index].url.params)


# =========================================================================
# Recording sink
# =========================================================================

class RecordingSink(EventSink):
    """Collects every callback as ``(name, args)`` tuples."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, tuple]] = []

    def on_status_changed(self, status, message):
        self.events.append(("status", (status, message)))

    def on_error(self, error, message):
        self.events.append(("error", (error, message)))

    def on_network_exception(self, exc):
        self.events.append(("network", (exc,)))

    def on_command_result(self, command, success, error, message):
        self.events.append(("command", (command, success, error, message)))

    def on_user_status(self, country_code, phone_number, status):
        self.events.append(("user_status", (country_code, phone_number, status)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


# =========================================================================
# Fixtures
# =========================================================================

@pytest.fixture
def make_environment() -> Callable[..., ClientEnvironment]:
    """Factory fixture: a ClientEnvironment pointing at the fake endpoint."""

    def _make(**overrides: Any) -> ClientEnvironment:
        kwargs: Dict[str, Any] = {
            "app_id": APP_ID,
            "shared_secret": SECRET,
            "device_id_provider": lambda: DEVICE_ID,
            "base_url": BASE_URL,
            "source_ip_provider": lambda: "10.1.2.3",
            "language_provider": lambda: "en-GB",
            "os_revision": "6.1",
        }
        kwargs.update(overrides)
        return ClientEnvironment(**kwargs)

    return _make


@pytest.fixture
def environment(make_environment) -> ClientEnvironment:
    return make_environment()


@pytest.fixture
def server() -> ScriptedServer:
    return ScriptedServer()


@pytest_asyncio.fixture
async def transport(environment, server):
    client = TransportClient(environment, transport=httpx.MockTransport(server.handler))
    yield client
    await client.aclose()


@pytest.fixture
def services(transport) -> ServiceBundle:
    return ServiceBundle.from_transport(transport)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def session(services, environment, sink):
    verify_session = VerifySession(services, environment)
    await verify_session.add_listener(sink)
    yield verify_session
    await verify_session.aclose()
