# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Verification session state machine.

A :class:`VerifySession` drives one end-user verification context:

    NEW -> AWAITING_TOKEN -> PENDING -> VERIFIED | FAILED | EXPIRED | BLACKLISTED

with ``VERIFIED -> NEW`` after a logout and ``PENDING -> NEW`` after a
cancel.  Every public operation is a coroutine that returns an
:class:`~pinverify.verify.models.OperationResult` and delivers exactly
one callback to the registered listeners.

Concurrency
-----------
Operations that touch the active :class:`VerificationRequest` run under
one ``asyncio.Lock``, so a token refresh can never interleave with a PIN
check.  Listener callbacks are delivered after the lock is released so
a listener may call back into the session.  Status queries do not touch
the active request; concurrent queries for the same number share one
in-flight task.

Token handling
--------------
Every start, query and command fetches a fresh token.  A PIN check
reuses the token obtained by the start.  When the server answers
``INVALID_TOKEN`` the token is discarded from the same request object,
one new token is fetched and the call is retried once.  A second
``INVALID_TOKEN`` is reported as ``THROTTLED`` and the refreshed token
is kept.  If the refresh itself fails the rejected token is put back,
so a pending request always holds a token and the next PIN check can
proceed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set, Tuple, TypeVar, Union

import httpx

from pinverify.config import COMMAND_MIN_PENDING_SECONDS
from pinverify.verify.environment import ClientEnvironment, redact
from pinverify.verify.events import EventSink, ListenerRegistry
from pinverify.verify.exceptions import (
    LocalValidationError,
    NoDeviceIdError,
    ProtocolError,
    TransportError,
)
from pinverify.verify.models import (
    Command,
    OperationResult,
    ResultCode,
    SessionState,
    UserStatus,
    VerifyError,
)
from pinverify.verify.request import VerificationRequest, normalize_phone_number, validate_pin
from pinverify.verify.services import ServiceBundle
from pinverify.verify.transport import TransportClient

logger = logging.getLogger(__name__)

__all__ = ["VerifySession"]

T = TypeVar("T")

MSG_PENDING = "verify in progress"
MSG_VERIFIED = "user verified"

_ACTIVE_STATES = frozenset({SessionState.AWAITING_TOKEN, SessionState.PENDING})
_RESETTING_COMMANDS = frozenset({Command.LOGOUT, Command.CANCEL})

# user_status -> (state, error reported alongside it)
_STATUS_OUTCOMES: Dict[UserStatus, Tuple[SessionState, Optional[VerifyError]]] = {
    UserStatus.PENDING: (SessionState.PENDING, None),
    UserStatus.VERIFIED: (SessionState.VERIFIED, None),
    UserStatus.FAILED: (SessionState.FAILED, VerifyError.USER_FAILED),
    UserStatus.EXPIRED: (SessionState.EXPIRED, VerifyError.USER_EXPIRED),
    UserStatus.BLACKLISTED: (SessionState.BLACKLISTED, VerifyError.USER_BLACKLISTED),
}

_CALL_FAILURES = (ProtocolError, TransportError, NoDeviceIdError)


class VerifySession:
    """One verification context for one end user.

    Parameters
    ----------
    services : ServiceBundle
        Token, verify, check, search and command services.
    environment : ClientEnvironment
        Credentials and device properties.
    listeners : ListenerRegistry, optional
        Registry to notify; a fresh one is created when omitted.
    """

    def __init__(
        self,
        services: ServiceBundle,
        environment: ClientEnvironment,
        listeners: Optional[ListenerRegistry] = None,
    ):
        self._services = services
        self._environment = environment
        self._listeners = listeners if listeners is not None else ListenerRegistry()
        self._lock = asyncio.Lock()
        self._request: Optional[VerificationRequest] = None
        self._queries: Dict[Tuple[str, str], asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._transport: Optional[TransportClient] = None

    @classmethod
    def create(
        cls,
        environment: ClientEnvironment,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "VerifySession":
        """Build a session with its own transport and default services."""
        transport = TransportClient(environment, transport=http_transport)
        session = cls(ServiceBundle.from_transport(transport), environment)
        session._transport = transport
        return session

    async def aclose(self) -> None:
        pending = [*self._tasks, *self._queries.values()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._transport is not None:
            await self._transport.aclose()

    async def __aenter__(self) -> "VerifySession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # State and listeners
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._request is None:
            return SessionState.NEW
        return self._request.status

    @property
    def request(self) -> Optional[VerificationRequest]:
        return self._request

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    async def add_listener(self, listener: EventSink) -> None:
        await self._listeners.add(listener)

    async def remove_listener(self, listener: EventSink) -> bool:
        return await self._listeners.remove(listener)

    async def clear_listeners(self) -> None:
        await self._listeners.clear()

    def submit(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        """Run *coro* in the background; the caller does not wait."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def _failure(self, exc: BaseException) -> OperationResult:
        state = self.state
        if isinstance(exc, NoDeviceIdError):
            exc = LocalValidationError.device_id_missing(str(exc))
        if isinstance(exc, (ProtocolError, LocalValidationError)):
            return OperationResult(success=False, state=state, error=exc.error, message=exc.message, exception=None)
        return OperationResult(success=False, state=state, message=str(exc), exception=exc)

    async def _report(self, result: OperationResult) -> OperationResult:
        if result.exception is not None:
            await self._listeners.on_network_exception(result.exception)
        elif result.error is not None:
            await self._listeners.on_error(result.error, result.message or "")
        else:
            await self._listeners.on_status_changed(result.state, result.message or "")
        return result

    def _unresolved_status(self, status: UserStatus) -> OperationResult:
        if status == UserStatus.UNKNOWN:
            return OperationResult(
                success=False, state=self.state, user_status=status,
                error=VerifyError.USER_UNKNOWN, message="user unknown",
            )
        return OperationResult(
            success=False,
            state=self.state,
            user_status=status,
            error=VerifyError.INTERNAL_ERR,
            message=f"Unexpected user status: {status.value}",
        )

    def _status_outcome(self, request: VerificationRequest, status: UserStatus) -> OperationResult:
        if status not in _STATUS_OUTCOMES:
            return self._unresolved_status(status)
        state, error = _STATUS_OUTCOMES[status]
        request.set_status(state)
        if error is not None:
            return OperationResult(
                success=False, state=state, user_status=status, error=error, message=f"user {status.value}",
            )
        message = MSG_VERIFIED if state == SessionState.VERIFIED else MSG_PENDING
        return OperationResult(success=True, state=state, user_status=status, message=message)

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    async def _with_token_retry(
        self,
        request: VerificationRequest,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await call()
        except ProtocolError as exc:
            if not exc.is_invalid_token:
                raise
            logger.info("Token %s rejected; fetching a new one", redact(request.token))

        rejected = request.token
        request.discard_token()
        try:
            request.token = await self._services.token.fetch()
        except _CALL_FAILURES:
            # never leave a pending request without a token
            request.token = rejected
            raise
        try:
            return await call()
        except ProtocolError as exc:
            if not exc.is_invalid_token:
                raise
            raise ProtocolError(
                VerifyError.THROTTLED,
                "Token rejected again after refresh",
                exc.result_code,
            ) from exc

    def _require_device_id(self) -> None:
        try:
            self._environment.device_id()
        except NoDeviceIdError as exc:
            raise LocalValidationError.device_id_missing(str(exc)) from exc

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_verification(self, country_code: str, phone_number: str) -> OperationResult:
        """Start verifying *phone_number*; the PIN is delivered out of band."""
        async with self._lock:
            result = await self._start_locked(country_code, phone_number)
        return await self._report(result)

    async def _start_locked(self, country_code: str, phone_number: str) -> OperationResult:
        try:
            country_code, phone_number = normalize_phone_number(country_code, phone_number)
            if self.state in _ACTIVE_STATES:
                raise LocalValidationError.already_started()
            self._require_device_id()
        except LocalValidationError as exc:
            return self._failure(exc)

        previous = self._request
        if previous is not None and previous.status == SessionState.VERIFIED and previous.matches(country_code, phone_number):
            logger.info("Number already verified in this session; skipping network")
            return OperationResult(
                success=True, state=SessionState.VERIFIED, user_status=UserStatus.VERIFIED, message=MSG_VERIFIED,
            )

        request = VerificationRequest(country_code=country_code, phone_number=phone_number)
        request.set_status(SessionState.AWAITING_TOKEN)
        self._request = request
        logger.info("Starting verification for %s %s", country_code, redact(phone_number))

        try:
            request.token = await self._services.token.fetch()
            response = await self._with_token_retry(
                request, lambda: self._services.verify.verify(request)
            )
        except _CALL_FAILURES as exc:
            logger.info("Start failed: %s", exc)
            self._request = previous
            return self._failure(exc)

        if response.status not in _STATUS_OUTCOMES:
            logger.info("Start rejected, user status %s", response.status.value)
            self._request = previous
            return self._unresolved_status(response.status)
        if response.result_code != ResultCode.OK:
            logger.info("Verification restarted by server (result_code=%s)", response.result_code)
        return self._status_outcome(request, response.status)

    # ------------------------------------------------------------------
    # PIN check
    # ------------------------------------------------------------------

    async def check_pin(self, pin: str) -> OperationResult:
        """Submit the PIN the user received for the pending verification."""
        async with self._lock:
            result = await self._check_locked(pin)
        return await self._report(result)

    async def _check_locked(self, pin: str) -> OperationResult:
        request = self._request
        try:
            pin = validate_pin(pin)
            if request is None or request.status != SessionState.PENDING or not request.token:
                raise LocalValidationError.cannot_perform_check(self.state.value)
            self._require_device_id()
        except LocalValidationError as exc:
            return self._failure(exc)

        request.pin_code = pin
        try:
            response = await self._with_token_retry(
                request, lambda: self._services.check.check(request)
            )
        except ProtocolError as exc:
            if exc.result_code == ResultCode.INVALID_CODE_TOO_MANY_TIMES:
                request.set_status(SessionState.FAILED)
            return self._failure(exc)
        except (TransportError, NoDeviceIdError) as exc:
            return self._failure(exc)
        finally:
            request.clear_pin()

        status = response.status
        if status == UserStatus.PENDING:
            return OperationResult(
                success=False, state=SessionState.PENDING, user_status=status,
                error=VerifyError.INVALID_PIN_CODE, message="PIN code rejected",
            )
        return self._status_outcome(request, status)

    # ------------------------------------------------------------------
    # Status query
    # ------------------------------------------------------------------

    async def query_status(self, country_code: str, phone_number: str) -> OperationResult:
        """Ask the server for a number's user status.

        Concurrent queries for the same number share one round-trip and
        one ``on_user_status`` callback.
        """
        try:
            country_code, phone_number = normalize_phone_number(country_code, phone_number)
            self._require_device_id()
        except LocalValidationError as exc:
            return await self._report(self._failure(exc))

        key = (country_code, phone_number)
        task = self._queries.get(key)
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._run_query(country_code, phone_number))
            self._queries[key] = task
            task.add_done_callback(lambda done: self._forget_query(key, done))
        else:
            logger.debug("Joining in-flight status query for %s", redact(phone_number))
        return await asyncio.shield(task)

    def _forget_query(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._queries.get(key) is task:
            del self._queries[key]

    async def _run_query(self, country_code: str, phone_number: str) -> OperationResult:
        holder = VerificationRequest(country_code=country_code, phone_number=phone_number)
        try:
            holder.token = await self._services.token.fetch()
            response = await self._with_token_retry(
                holder,
                lambda: self._services.search.search(holder.token, country_code, phone_number),
            )
        except _CALL_FAILURES as exc:
            return await self._report(self._failure(exc))

        status = response.status
        await self._listeners.on_user_status(country_code, phone_number, status)
        return OperationResult(success=True, state=self.state, user_status=status, message=status.value)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def command(
        self,
        country_code: str,
        phone_number: str,
        command: Union[Command, str],
    ) -> OperationResult:
        """Issue a control command for a number.

        When the number is this session's active number the command is
        checked against the local lifecycle first: logout needs a
        verified user, cancel and next-event need a verification that
        has been pending long enough.
        """
        try:
            cmd = Command(command)
        except ValueError:
            result = OperationResult(
                success=False, state=self.state, error=VerifyError.COMMAND_NOT_SUPPORTED,
                message=f"Unknown command: {command!r}",
            )
            await self._listeners.on_command_result(command, False, result.error, result.message)
            return result

        async with self._lock:
            result = await self._command_locked(country_code, phone_number, cmd)

        if result.exception is not None:
            await self._listeners.on_network_exception(result.exception)
        else:
            await self._listeners.on_command_result(cmd, result.success, result.error, result.message)
        return result

    def _check_command_allowed(self, request: VerificationRequest, cmd: Command) -> None:
        if cmd == Command.LOGOUT:
            if request.status != SessionState.VERIFIED:
                raise LocalValidationError.invalid_status_for_command(cmd, request.status.value)
            return
        if request.status != SessionState.PENDING:
            raise LocalValidationError.invalid_status_for_command(cmd, request.status.value)
        elapsed = request.seconds_pending()
        if elapsed < COMMAND_MIN_PENDING_SECONDS:
            raise LocalValidationError.command_too_early(cmd, elapsed, COMMAND_MIN_PENDING_SECONDS)

    async def _command_locked(self, country_code: str, phone_number: str, cmd: Command) -> OperationResult:
        try:
            country_code, phone_number = normalize_phone_number(country_code, phone_number)
            self._require_device_id()
            active = self._request if (
                self._request is not None and self._request.matches(country_code, phone_number)
            ) else None
            if active is not None:
                self._check_command_allowed(active, cmd)
        except LocalValidationError as exc:
            return self._failure(exc)

        holder = active if active is not None else VerificationRequest(country_code, phone_number)
        logger.info("Sending command %s for %s", cmd.value, redact(phone_number))
        try:
            holder.token = await self._services.token.fetch()
            response = await self._with_token_retry(
                holder,
                lambda: self._services.command.execute(holder.token, country_code, phone_number, cmd),
            )
        except _CALL_FAILURES as exc:
            return self._failure(exc)

        if active is not None and cmd in _RESETTING_COMMANDS:
            self._request = None
        return OperationResult(
            success=True, state=self.state, user_status=response.status, message=response.result_message,
        )
