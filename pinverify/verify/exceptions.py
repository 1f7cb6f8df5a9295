# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Verification client exceptions mapped to VerifyError codes."""

from typing import Optional

from pinverify.verify.models import Command, VerifyError, error_for_result_code


class VerifyClientError(Exception):
    """Base exception for verification client errors."""
    pass


class ClientConfigError(VerifyClientError):
    """Invalid client environment (missing app id, shared secret, endpoint)."""
    pass


class NoDeviceIdError(VerifyClientError):
    """The injected device-id provider could not produce an identifier."""
    pass


class TransportError(VerifyClientError):
    """Connection failure, timeout, non-200 status or empty response body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(VerifyClientError):
    """Server-reported result code mapped to a VerifyError."""

    def __init__(self, error: VerifyError, message: str, result_code: Optional[int] = None):
        self.error = error
        self.message = message
        self.result_code = result_code
        super().__init__(message)

    @classmethod
    def from_result(cls, result_code: int, message: Optional[str] = None) -> "ProtocolError":
        return cls(
            error=error_for_result_code(result_code),
            message=message or f"Request rejected with result code {result_code}",
            result_code=result_code,
        )

    @classmethod
    def undecodable(cls, reason: str) -> "ProtocolError":
        return cls(error=VerifyError.INTERNAL_ERR, message=f"Response could not be decoded: {reason}")

    @property
    def is_invalid_token(self) -> bool:
        return self.error == VerifyError.INVALID_TOKEN


class SignatureError(ProtocolError):
    """Response signature missing, mismatched, or timestamp outside the skew window."""

    def __init__(self, message: str = "Invalid credentials.", result_code: Optional[int] = None):
        super().__init__(VerifyError.INVALID_CREDENTIALS, message, result_code)


class LocalValidationError(VerifyClientError):
    """Client-side precondition failure, raised before any network call."""

    def __init__(self, error: VerifyError, message: str):
        self.error = error
        self.message = message
        super().__init__(message)

    @classmethod
    def number_required(cls) -> "LocalValidationError":
        return cls(VerifyError.NUMBER_REQUIRED, "Country code and phone number are required")

    @classmethod
    def invalid_number(cls, reason: str) -> "LocalValidationError":
        return cls(VerifyError.INVALID_NUMBER, f"Phone number is invalid: {reason}")

    @classmethod
    def invalid_pin(cls, reason: str) -> "LocalValidationError":
        return cls(VerifyError.INVALID_PIN_CODE, f"PIN code is invalid: {reason}")

    @classmethod
    def already_started(cls) -> "LocalValidationError":
        return cls(
            VerifyError.VERIFICATION_ALREADY_STARTED,
            "A verification is already in progress for this session",
        )

    @classmethod
    def cannot_perform_check(cls, state: str) -> "LocalValidationError":
        return cls(
            VerifyError.CANNOT_PERFORM_CHECK,
            f"PIN check requires a pending verification with a token (state={state})",
        )

    @classmethod
    def device_id_missing(cls, reason: str) -> "LocalValidationError":
        return cls(VerifyError.DEVICE_ID_NOT_FOUND, f"Device id is not available: {reason}")

    @classmethod
    def invalid_status_for_command(cls, command: Command, state: str) -> "LocalValidationError":
        return cls(
            VerifyError.INVALID_USER_STATUS_FOR_COMMAND,
            f"Command '{command.value}' is not allowed in state {state}",
        )

    @classmethod
    def command_too_early(cls, command: Command, elapsed: float, minimum: float) -> "LocalValidationError":
        return cls(
            VerifyError.COMMAND_NOT_SUPPORTED,
            f"Command '{command.value}' requires {minimum:.0f}s in pending state (elapsed={elapsed:.1f}s)",
        )
