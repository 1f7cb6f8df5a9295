# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Verification protocol models: result codes, errors, statuses and responses."""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Server result codes
# =============================================================================

class ResultCode(IntEnum):
    OK = 0
    BAD_APP_ID = 2
    INVALID_TOKEN = 3
    INVALID_CREDENTIALS = 4
    INTERNAL_ERROR = 5
    QUOTA_EXCEEDED = 9
    INVALID_PIN_CODE = 16
    INVALID_CODE_TOO_MANY_TIMES = 17
    COMMAND_NOT_SUPPORTED = 19
    INVALID_NUMBER = 53
    INVALID_CODE = 54
    CANNOT_PERFORM_CHECK = 55
    VERIFICATION_RESTARTED = 56
    VERIFICATION_EXPIRED_RESTARTED = 57
    SDK_NOT_SUPPORTED = 58
    OS_NOT_SUPPORTED = 59
    REQUEST_REJECTED = 60
    INVALID_USER_STATUS_FOR_COMMAND = 62
    INVALID_USER_STATUS_FOR_LOGOUT = 63


# =============================================================================
# Domain errors reported to the EventSink
# =============================================================================

class VerifyError(str, Enum):
    VERIFICATION_ALREADY_STARTED = "VERIFICATION_ALREADY_STARTED"
    VERIFICATION_NOT_STARTED = "VERIFICATION_NOT_STARTED"
    NUMBER_REQUIRED = "NUMBER_REQUIRED"
    INVALID_NUMBER = "INVALID_NUMBER"
    DEVICE_ID_NOT_FOUND = "DEVICE_ID_NOT_FOUND"
    CANNOT_PERFORM_CHECK = "CANNOT_PERFORM_CHECK"
    INVALID_PIN_CODE = "INVALID_PIN_CODE"
    INVALID_CODE_TOO_MANY_TIMES = "INVALID_CODE_TOO_MANY_TIMES"
    INVALID_TOKEN = "INVALID_TOKEN"
    USER_EXPIRED = "USER_EXPIRED"
    USER_BLACKLISTED = "USER_BLACKLISTED"
    USER_UNKNOWN = "USER_UNKNOWN"
    USER_FAILED = "USER_FAILED"
    THROTTLED = "THROTTLED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_USER_STATUS_FOR_COMMAND = "INVALID_USER_STATUS_FOR_COMMAND"
    COMMAND_NOT_SUPPORTED = "COMMAND_NOT_SUPPORTED"
    SDK_REVISION_NOT_SUPPORTED = "SDK_REVISION_NOT_SUPPORTED"
    OS_NOT_SUPPORTED = "OS_NOT_SUPPORTED"
    INTERNAL_ERR = "INTERNAL_ERR"


RESULT_CODE_ERRORS: Dict[int, VerifyError] = {
    ResultCode.BAD_APP_ID: VerifyError.INVALID_CREDENTIALS,
    ResultCode.INVALID_TOKEN: VerifyError.INVALID_TOKEN,
    ResultCode.INVALID_CREDENTIALS: VerifyError.INVALID_CREDENTIALS,
    ResultCode.INTERNAL_ERROR: VerifyError.INTERNAL_ERR,
    ResultCode.QUOTA_EXCEEDED: VerifyError.QUOTA_EXCEEDED,
    ResultCode.INVALID_PIN_CODE: VerifyError.INVALID_PIN_CODE,
    ResultCode.INVALID_CODE_TOO_MANY_TIMES: VerifyError.INVALID_CODE_TOO_MANY_TIMES,
    ResultCode.COMMAND_NOT_SUPPORTED: VerifyError.COMMAND_NOT_SUPPORTED,
    ResultCode.INVALID_NUMBER: VerifyError.INVALID_NUMBER,
    ResultCode.INVALID_CODE: VerifyError.INVALID_PIN_CODE,
    ResultCode.CANNOT_PERFORM_CHECK: VerifyError.CANNOT_PERFORM_CHECK,
    ResultCode.SDK_NOT_SUPPORTED: VerifyError.SDK_REVISION_NOT_SUPPORTED,
    ResultCode.OS_NOT_SUPPORTED: VerifyError.OS_NOT_SUPPORTED,
    ResultCode.REQUEST_REJECTED: VerifyError.THROTTLED,
    ResultCode.INVALID_USER_STATUS_FOR_COMMAND: VerifyError.INVALID_USER_STATUS_FOR_COMMAND,
    ResultCode.INVALID_USER_STATUS_FOR_LOGOUT: VerifyError.INVALID_USER_STATUS_FOR_COMMAND,
}


def error_for_result_code(result_code: int) -> VerifyError:
    """Map a server result code to a VerifyError; unknown codes are INTERNAL_ERR."""
    return RESULT_CODE_ERRORS.get(result_code, VerifyError.INTERNAL_ERR)


# =============================================================================
# Statuses
# =============================================================================

class UserStatus(str, Enum):
    """User status as reported by the remote service."""

    NEW = "new"
    PENDING = "pending"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    FAILED = "failed"
    EXPIRED = "expired"
    BLACKLISTED = "blacklisted"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "UserStatus":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class SessionState(str, Enum):
    """Lifecycle state of a VerifySession."""

    NEW = "NEW"
    AWAITING_TOKEN = "AWAITING_TOKEN"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    BLACKLISTED = "BLACKLISTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SessionState.FAILED,
    SessionState.EXPIRED,
    SessionState.BLACKLISTED,
})


class Command(str, Enum):
    """Control commands altering an in-flight verification."""

    LOGOUT = "logout"
    CANCEL = "cancel"
    TRIGGER_NEXT_EVENT = "trigger_next_event"


# =============================================================================
# Response bodies
# =============================================================================

class BaseResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    result_code: int = Field(default=ResultCode.INTERNAL_ERROR)
    result_message: Optional[str] = None
    timestamp: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.result_code == ResultCode.OK


class TokenResponse(BaseResponse):
    token: Optional[str] = None


class UserStatusResponse(BaseResponse):
    user_status: Optional[str] = None

    @property
    def status(self) -> UserStatus:
        return UserStatus.parse(self.user_status)


class VerifyResponse(UserStatusResponse):
    pass


class CheckResponse(UserStatusResponse):
    pass


class SearchResponse(UserStatusResponse):
    pass


class CommandResponse(UserStatusResponse):
    pass


# =============================================================================
# Operation outcome returned by VerifySession
# =============================================================================

@dataclass(frozen=True)
class OperationResult:
    """Outcome of one logical session operation.

    Exactly one of ``error`` / ``exception`` is set on failure; both are
    ``None`` on success.
    """

    success: bool
    state: SessionState
    user_status: Optional[UserStatus] = None
    error: Optional[VerifyError] = None
    message: Optional[str] = None
    exception: Optional[BaseException] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "state": self.state.value,
            "user_status": self.user_status.value if self.user_status else None,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "exception": repr(self.exception) if self.exception else None,
        }
