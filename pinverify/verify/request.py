# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Session-scoped verification request and local input validation."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

from pinverify.config import (
    MAX_PHONE_NUMBER_LENGTH,
    MAX_PIN_LENGTH,
    MIN_PHONE_NUMBER_LENGTH,
    MIN_PIN_LENGTH,
)
from pinverify.verify.exceptions import LocalValidationError
from pinverify.verify.models import SessionState

__all__ = [
    "VerificationRequest",
    "normalize_phone_number",
    "validate_pin",
]

_NUMBER_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone_number(country_code: Optional[str], phone_number: Optional[str]) -> tuple[str, str]:
    """Validate and normalize a (country code, phone number) pair.

    Raises
    ------
    LocalValidationError
        ``NUMBER_REQUIRED`` when either part is missing, ``INVALID_NUMBER``
        when the number is not 2-15 digits after stripping separators.
    """
    if not country_code or not country_code.strip() or not phone_number or not phone_number.strip():
        raise LocalValidationError.number_required()

    number = _NUMBER_SEPARATORS.sub("", phone_number.strip())
    if number.startswith("+"):
        number = number[1:]
    if not number.isdigit():
        raise LocalValidationError.invalid_number("must contain digits only")
    if not MIN_PHONE_NUMBER_LENGTH <= len(number) <= MAX_PHONE_NUMBER_LENGTH:
        raise LocalValidationError.invalid_number(
            f"length {len(number)} outside {MIN_PHONE_NUMBER_LENGTH}-{MAX_PHONE_NUMBER_LENGTH}"
        )
    return country_code.strip().upper(), number


def validate_pin(pin: Optional[str]) -> str:
    if pin is None or not pin.strip():
        raise LocalValidationError.invalid_pin("PIN is required")
    pin = pin.strip()
    if not MIN_PIN_LENGTH <= len(pin) <= MAX_PIN_LENGTH:
        raise LocalValidationError.invalid_pin(
            f"length {len(pin)} outside {MIN_PIN_LENGTH}-{MAX_PIN_LENGTH}"
        )
    return pin


@dataclass
class VerificationRequest:
    """The in-flight verification owned by one session.

    ``token`` is never kept beyond this request.  ``pin_code`` is cleared
    after every check attempt.  ``pending_since`` is a monotonic timestamp.
    """

    country_code: str
    phone_number: str
    token: Optional[str] = None
    pin_code: Optional[str] = None
    status: SessionState = SessionState.NEW
    pending_since: Optional[float] = None

    def matches(self, country_code: str, phone_number: str) -> bool:
        return self.country_code == country_code and self.phone_number == phone_number

    def set_status(self, status: SessionState) -> None:
        if status == SessionState.PENDING and self.status != SessionState.PENDING:
            self.pending_since = time.monotonic()
        elif status != SessionState.PENDING:
            self.pending_since = None
        self.status = status

    def seconds_pending(self) -> float:
        if self.pending_since is None:
            return 0.0
        return time.monotonic() - self.pending_since

    def discard_token(self) -> None:
        self.token = None

    def clear_pin(self) -> None:
        self.pin_code = None

    def __repr__(self) -> str:
        return (
            f"VerificationRequest(country_code={self.country_code!r}, "
            f"phone_number={self.phone_number!r}, status={self.status.value}, "
            f"has_token={self.token is not None})"
        )
