# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Operation services: one stateless adapter per remote method.

Each service builds the parameter set for its method from the client
environment and the caller's inputs, sends it through the signed
transport, decodes the JSON body into a response model, authenticates
the response and maps the result code.  The outcome of every call is
exactly one of:

- a returned response model (success),
- a raised :class:`~pinverify.verify.exceptions.ProtocolError`
  (server result code, bad signature, undecodable body),
- a raised :class:`~pinverify.verify.exceptions.TransportError`.

Signature policy
----------------
Successful responses are always authenticated.  A response that carries
a signature header which fails validation is rejected as
``INVALID_CREDENTIALS`` whatever its result code.  An unsigned error
response is trusted for its result code, since the server does not sign
every rejection.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, FrozenSet, Optional, Type, TypeVar

from pydantic import ValidationError

from pinverify.config import (
    COMMAND_CANCEL,
    COMMAND_TRIGGER_NEXT_EVENT,
    METHOD_CHECK,
    METHOD_CONTROL,
    METHOD_LOGOUT,
    METHOD_SEARCH,
    METHOD_TOKEN,
    METHOD_VERIFY,
    PARAM_APP_ID,
    PARAM_CODE,
    PARAM_COMMAND,
    PARAM_COUNTRY_CODE,
    PARAM_DEVICE_ID,
    PARAM_LANGUAGE,
    PARAM_NUMBER,
    PARAM_PUSH_TOKEN,
    PARAM_SOURCE_IP,
    PARAM_TOKEN,
)
from pinverify.verify.environment import ClientEnvironment, redact
from pinverify.verify.exceptions import ProtocolError, SignatureError
from pinverify.verify.models import (
    BaseResponse,
    CheckResponse,
    Command,
    CommandResponse,
    ResultCode,
    SearchResponse,
    TokenResponse,
    VerifyError,
    VerifyResponse,
)
from pinverify.verify.request import VerificationRequest
from pinverify.verify.signing import verify_response_signature
from pinverify.verify.transport import OutboundRequest, TransportClient

logger = logging.getLogger(__name__)

__all__ = [
    "BaseService",
    "CheckService",
    "CommandService",
    "SearchService",
    "ServiceBundle",
    "TokenService",
    "VerifyService",
]

R = TypeVar("R", bound=BaseResponse)

_OK_ONLY: FrozenSet[int] = frozenset({ResultCode.OK})


class BaseService:
    """Shared parameter building, decoding and authentication."""

    def __init__(self, transport: TransportClient):
        self._transport = transport

    @property
    def environment(self) -> ClientEnvironment:
        return self._transport.environment

    def _device_params(self) -> Dict[str, Optional[str]]:
        env = self.environment
        return {
            PARAM_APP_ID: env.app_id,
            PARAM_DEVICE_ID: env.device_id(),
            PARAM_SOURCE_IP: env.source_ip(),
        }

    def _number_params(self, token: Optional[str], country_code: str, phone_number: str) -> Dict[str, Optional[str]]:
        params = self._device_params()
        params[PARAM_TOKEN] = token
        params[PARAM_COUNTRY_CODE] = country_code
        params[PARAM_NUMBER] = phone_number
        return params

    async def _send(
        self,
        method: str,
        params: Dict[str, Optional[str]],
        model: Type[R],
        success_codes: FrozenSet[int] = _OK_ONLY,
    ) -> R:
        signed = await self._transport.call(OutboundRequest(method=method, params=params))

        try:
            data = json.loads(signed.body)
        except json.JSONDecodeError as exc:
            raise ProtocolError.undecodable(str(exc)) from exc
        if not isinstance(data, dict):
            raise ProtocolError.undecodable(f"expected a JSON object, got {type(data).__name__}")
        try:
            response = model.model_validate(data)
        except ValidationError as exc:
            raise ProtocolError.undecodable(str(exc)) from exc

        succeeded = response.result_code in success_codes
        if succeeded or signed.signature:
            valid = verify_response_signature(
                response.timestamp,
                signed.body,
                signed.signature,
                self.environment.shared_secret,
            )
            if not valid:
                logger.warning(
                    "Rejecting %s response: signature did not validate (result_code=%s)",
                    method, response.result_code,
                )
                raise SignatureError(result_code=response.result_code)

        if not succeeded:
            error = ProtocolError.from_result(response.result_code, response.result_message)
            logger.info(
                "%s rejected: result_code=%s error=%s",
                method, response.result_code, error.error.value,
            )
            raise error

        return response


class TokenService(BaseService):
    """Fetch a short-lived per-device token."""

    async def fetch(self) -> str:
        response = await self._send(METHOD_TOKEN, self._device_params(), TokenResponse)
        if not response.token:
            raise ProtocolError(VerifyError.INTERNAL_ERR, "Token response carried no token", response.result_code)
        logger.debug("Fetched token %s", redact(response.token))
        return response.token


class VerifyService(BaseService):
    """Start (or resume) a verification for the request's number.

    A restarted verification is still a successful start; the caller
    inspects ``user_status``.
    """

    SUCCESS_CODES: FrozenSet[int] = frozenset({
        ResultCode.OK,
        ResultCode.VERIFICATION_RESTARTED,
        ResultCode.VERIFICATION_EXPIRED_RESTARTED,
    })

    async def verify(self, request: VerificationRequest) -> VerifyResponse:
        params = self._number_params(request.token, request.country_code, request.phone_number)
        params[PARAM_LANGUAGE] = self.environment.language()
        params[PARAM_PUSH_TOKEN] = self.environment.push_token
        return await self._send(METHOD_VERIFY, params, VerifyResponse, self.SUCCESS_CODES)


class CheckService(BaseService):
    async def check(self, request: VerificationRequest) -> CheckResponse:
        params = self._number_params(request.token, request.country_code, request.phone_number)
        params[PARAM_CODE] = request.pin_code
        return await self._send(METHOD_CHECK, params, CheckResponse)


class SearchService(BaseService):
    async def search(self, token: str, country_code: str, phone_number: str) -> SearchResponse:
        params = self._number_params(token, country_code, phone_number)
        return await self._send(METHOD_SEARCH, params, SearchResponse)


class CommandService(BaseService):
    """Logout goes to its own method; cancel and next-event share ``control``."""

    async def execute(
        self,
        token: str,
        country_code: str,
        phone_number: str,
        command: Command,
    ) -> CommandResponse:
        params = self._number_params(token, country_code, phone_number)
        if command == Command.LOGOUT:
            method = METHOD_LOGOUT
        elif command == Command.CANCEL:
            method = METHOD_CONTROL
            params[PARAM_COMMAND] = COMMAND_CANCEL
        elif command == Command.TRIGGER_NEXT_EVENT:
            method = METHOD_CONTROL
            params[PARAM_COMMAND] = COMMAND_TRIGGER_NEXT_EVENT
        else:
            raise ValueError(f"Unsupported command: {command!r}")
        return await self._send(method, params, CommandResponse)


class ServiceBundle:
    """The set of services a session drives, all sharing one transport."""

    def __init__(
        self,
        token: TokenService,
        verify: VerifyService,
        check: CheckService,
        search: SearchService,
        command: CommandService,
    ):
        self.token = token
        self.verify = verify
        self.check = check
        self.search = search
        self.command = command

    @classmethod
    def from_transport(cls, transport: TransportClient) -> "ServiceBundle":
        return cls(
            token=TokenService(transport),
            verify=VerifyService(transport),
            check=CheckService(transport),
            search=SearchService(transport),
            command=CommandService(transport),
        )
