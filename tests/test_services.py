# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the operation services (pinverify.verify.services).

Covers per-method parameter sets, JSON decoding, result-code mapping,
the response signature policy, and command routing.

References:
    - pinverify.verify.services
    - pinverify.verify.models.RESULT_CODE_ERRORS
"""

from __future__ import annotations

import time

import httpx
import pytest

from pinverify.config import CLOCK_SKEW_SECONDS
from pinverify.verify.exceptions import (
    NoDeviceIdError,
    ProtocolError,
    SignatureError,
    TransportError,
)
from pinverify.verify.models import (
    Command,
    ResultCode,
    UserStatus,
    VerifyError,
    error_for_result_code,
)
from pinverify.verify.request import VerificationRequest
from pinverify.verify.services import ServiceBundle

from tests.conftest import (
    APP_ID,
    DEVICE_ID,
    error_reply,
    signed_reply,
    status_reply,
    token_reply,
)


def _request(token: str = "tok-1", pin: str = None) -> VerificationRequest:
    return VerificationRequest(country_code="GB", phone_number="447700900000", token=token, pin_code=pin)


# =========================================================================
# Result code mapping
# =========================================================================

class TestResultCodeMapping:
    """The closed result-code to VerifyError table."""

    @pytest.mark.parametrize("code,error", [
        (2, VerifyError.INVALID_CREDENTIALS),
        (3, VerifyError.INVALID_TOKEN),
        (4, VerifyError.INVALID_CREDENTIALS),
        (5, VerifyError.INTERNAL_ERR),
        (9, VerifyError.QUOTA_EXCEEDED),
        (16, VerifyError.INVALID_PIN_CODE),
        (17, VerifyError.INVALID_CODE_TOO_MANY_TIMES),
        (19, VerifyError.COMMAND_NOT_SUPPORTED),
        (53, VerifyError.INVALID_NUMBER),
        (54, VerifyError.INVALID_PIN_CODE),
        (55, VerifyError.CANNOT_PERFORM_CHECK),
        (58, VerifyError.SDK_REVISION_NOT_SUPPORTED),
        (59, VerifyError.OS_NOT_SUPPORTED),
        (60, VerifyError.THROTTLED),
        (62, VerifyError.INVALID_USER_STATUS_FOR_COMMAND),
        (63, VerifyError.INVALID_USER_STATUS_FOR_COMMAND),
    ])
    def test_known_codes(self, code, error):
        assert error_for_result_code(code) == error

    @pytest.mark.parametrize("code", [1, 42, 99, 1000])
    def test_unknown_codes_are_internal(self, code):
        assert error_for_result_code(code) == VerifyError.INTERNAL_ERR


# =========================================================================
# Token service
# =========================================================================

class TestTokenService:
    """token/json: device parameters in, token out."""

    @pytest.mark.asyncio
    async def test_fetch_returns_token(self, services: ServiceBundle, server):
        server.script("token/json", token_reply("tok-abc"))

        token = await services.token.fetch()

        assert token == "tok-abc"
        params = server.params("token/json")
        assert params["app_id"] == APP_ID
        assert params["device_id"] == DEVICE_ID
        assert params["source_ip_address"] == "10.1.2.3"
        assert "token" not in params

    @pytest.mark.asyncio
    async def test_ok_without_token_is_internal(self, services, server):
        server.script("token/json", signed_reply({"result_code": 0}))
        with pytest.raises(ProtocolError) as exc_info:
            await services.token.fetch()
        assert exc_info.value.error == VerifyError.INTERNAL_ERR

    @pytest.mark.asyncio
    async def test_bad_app_id(self, services, server):
        server.script("token/json", error_reply(ResultCode.BAD_APP_ID, "bad app"))
        with pytest.raises(ProtocolError) as exc_info:
            await services.token.fetch()
        assert exc_info.value.error == VerifyError.INVALID_CREDENTIALS
        assert exc_info.value.result_code == 2
        assert exc_info.value.message == "bad app"

    @pytest.mark.asyncio
    async def test_missing_device_id(self, make_environment, server):
        from pinverify.verify.transport import TransportClient

        env = make_environment(device_id_provider=lambda: None)
        async with TransportClient(env, transport=httpx.MockTransport(server.handler)) as transport:
            bundle = ServiceBundle.from_transport(transport)
            with pytest.raises(NoDeviceIdError):
                await bundle.token.fetch()
        assert server.calls() == 0


# =========================================================================
# Response decoding and signature policy
# =========================================================================

class TestSignaturePolicy:
    """OK responses must validate; bad signatures always reject."""

    @pytest.mark.asyncio
    async def test_ok_with_bad_signature(self, services, server):
        server.script("token/json", token_reply(signature="0" * 32))
        with pytest.raises(SignatureError) as exc_info:
            await services.token.fetch()
        assert exc_info.value.error == VerifyError.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_ok_unsigned(self, services, server):
        server.script("token/json", token_reply(sign=False))
        with pytest.raises(SignatureError):
            await services.token.fetch()

    @pytest.mark.asyncio
    async def test_ok_with_stale_timestamp(self, services, server):
        stale = int(time.time()) - CLOCK_SKEW_SECONDS - 60
        server.script("token/json", token_reply(timestamp=stale))
        with pytest.raises(SignatureError):
            await services.token.fetch()

    @pytest.mark.asyncio
    async def test_ok_signed_with_wrong_secret(self, services, server):
        server.script("token/json", token_reply(secret="not-our-secret"))
        with pytest.raises(SignatureError):
            await services.token.fetch()

    @pytest.mark.asyncio
    async def test_error_with_bad_signature_is_invalid_credentials(self, services, server):
        server.script("token/json", error_reply(ResultCode.QUOTA_EXCEEDED, signature="f" * 32))
        with pytest.raises(SignatureError) as exc_info:
            await services.token.fetch()
        assert exc_info.value.error == VerifyError.INVALID_CREDENTIALS
        assert exc_info.value.result_code == ResultCode.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_unsigned_error_trusted(self, services, server):
        server.script("token/json", error_reply(ResultCode.QUOTA_EXCEEDED, sign=False))
        with pytest.raises(ProtocolError) as exc_info:
            await services.token.fetch()
        assert not isinstance(exc_info.value, SignatureError)
        assert exc_info.value.error == VerifyError.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]", b'{"result_code": "abc"}'])
    async def test_undecodable_body(self, services, server, body):
        server.script("token/json", httpx.Response(200, content=body))
        with pytest.raises(ProtocolError) as exc_info:
            await services.token.fetch()
        assert exc_info.value.error == VerifyError.INTERNAL_ERR

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, services, server):
        server.script("token/json", httpx.Response(502, content=b"bad gateway"))
        with pytest.raises(TransportError):
            await services.token.fetch()


# =========================================================================
# Verify / check / search
# =========================================================================

class TestVerifyService:

    @pytest.mark.asyncio
    async def test_params(self, services, server):
        server.script("verify/json", status_reply("pending"))

        response = await services.verify.verify(_request())

        assert response.status == UserStatus.PENDING
        params = server.params("verify/json")
        assert params["token"] == "tok-1"
        assert params["country"] == "GB"
        assert params["number"] == "447700900000"
        assert params["lg"] == "en-GB"
        assert "push_token" not in params

    @pytest.mark.asyncio
    async def test_push_token_forwarded(self, make_environment, server):
        from pinverify.verify.transport import TransportClient

        env = make_environment(push_token="push-123")
        async with TransportClient(env, transport=httpx.MockTransport(server.handler)) as transport:
            server.script("verify/json", status_reply("pending"))
            await ServiceBundle.from_transport(transport).verify.verify(_request())
        assert server.params("verify/json")["push_token"] == "push-123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [
        ResultCode.VERIFICATION_RESTARTED,
        ResultCode.VERIFICATION_EXPIRED_RESTARTED,
    ])
    async def test_restarted_is_success(self, services, server, code):
        server.script("verify/json", status_reply("pending", result_code=code))
        response = await services.verify.verify(_request())
        assert response.result_code == code
        assert response.status == UserStatus.PENDING

    @pytest.mark.asyncio
    async def test_invalid_number(self, services, server):
        server.script("verify/json", error_reply(ResultCode.INVALID_NUMBER))
        with pytest.raises(ProtocolError) as exc_info:
            await services.verify.verify(_request())
        assert exc_info.value.error == VerifyError.INVALID_NUMBER


class TestCheckService:

    @pytest.mark.asyncio
    async def test_sends_code(self, services, server):
        server.script("verify/check/json", status_reply("verified"))
        response = await services.check.check(_request(pin="1234"))
        assert response.status == UserStatus.VERIFIED
        assert server.params("verify/check/json")["code"] == "1234"

    @pytest.mark.asyncio
    async def test_restart_code_is_not_success_for_check(self, services, server):
        server.script("verify/check/json", status_reply("pending", result_code=ResultCode.VERIFICATION_RESTARTED))
        with pytest.raises(ProtocolError):
            await services.check.check(_request(pin="1234"))


class TestSearchService:

    @pytest.mark.asyncio
    async def test_unknown_status_parsed(self, services, server):
        server.script("verify/search/json", status_reply("something-new"))
        response = await services.search.search("tok-1", "GB", "447700900000")
        assert response.status == UserStatus.UNKNOWN


# =========================================================================
# Commands
# =========================================================================

class TestCommandService:
    """Command routing to logout/control methods."""

    @pytest.mark.asyncio
    async def test_logout(self, services, server):
        server.script("verify/logout/json", status_reply("unverified"))
        await services.command.execute("tok-1", "GB", "447700900000", Command.LOGOUT)
        params = server.params("verify/logout/json")
        assert "cmd" not in params
        assert params["token"] == "tok-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command,cmd", [
        (Command.CANCEL, "cancel"),
        (Command.TRIGGER_NEXT_EVENT, "trigger_next_event"),
    ])
    async def test_control(self, services, server, command, cmd):
        server.script("verify/control/json", status_reply("pending"))
        await services.command.execute("tok-1", "GB", "447700900000", command)
        assert server.params("verify/control/json")["cmd"] == cmd

    @pytest.mark.asyncio
    async def test_server_rejects_status(self, services, server):
        server.script("verify/logout/json", error_reply(ResultCode.INVALID_USER_STATUS_FOR_LOGOUT))
        with pytest.raises(ProtocolError) as exc_info:
            await services.command.execute("tok-1", "GB", "447700900000", Command.LOGOUT)
        assert exc_info.value.error == VerifyError.INVALID_USER_STATUS_FOR_COMMAND
