# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Request signing and response signature verification.

Every request sent to the verification service carries a ``timestamp``
and a ``sig`` parameter.  The signature is a lowercase hex MD5 digest over
the canonical parameter string followed by the application's shared
secret.  Responses are authenticated the same way: the server returns an
MD5 digest of ``body + secret`` in the ``X-NEXMO-RESPONSE-SIGNATURE``
header, and the body's embedded timestamp must fall inside the clock
skew window.

Canonical form
--------------
1. Drop ``sig`` and any parameter whose value is empty or blank.
2. Sort the remaining keys in ascending order.
3. Concatenate ``&key=value`` for each pair, with ``=`` and ``&``
   inside keys and values replaced by ``_``.

MD5 is the algorithm the remote service speaks; it is not a choice this
client is free to change.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from typing import Dict, Mapping, Optional, Tuple

from pinverify.config import (
    CLOCK_SKEW_SECONDS,
    PARAM_SIGNATURE,
    PARAM_TIMESTAMP,
    SIGNATURE_ALGORITHM,
)

logger = logging.getLogger(__name__)

__all__ = [
    "canonical_string",
    "compute_digest",
    "sign_request",
    "verify_response_signature",
]

_RESERVED_CHARS = re.compile(r"[=&]")


def _escape(value: str) -> str:
    return _RESERVED_CHARS.sub("_", value)


def canonical_string(params: Mapping[str, Optional[str]]) -> str:
    """Build the ordered ``&key=value`` string that the digest covers."""
    parts = []
    for key in sorted(params):
        if key == PARAM_SIGNATURE:
            continue
        value = params[key]
        if value is None or not str(value).strip():
            continue
        parts.append(f"&{_escape(key)}={_escape(str(value))}")
    return "".join(parts)


def compute_digest(payload: str, secret: str) -> str:
    """Hex digest of ``payload + secret`` using the service algorithm."""
    digest = hashlib.new(SIGNATURE_ALGORITHM)
    digest.update(payload.encode("utf-8"))
    digest.update(secret.encode("utf-8"))
    return digest.hexdigest().lower()


def sign_request(
    params: Mapping[str, Optional[str]],
    secret: str,
    now: Optional[float] = None,
) -> Tuple[Dict[str, str], str]:
    """Inject ``timestamp`` and ``sig`` into a copy of *params*.

    Parameters
    ----------
    params : Mapping[str, Optional[str]]
        Request parameters.  ``None`` and blank values are dropped.
    secret : str
        The application's shared secret.
    now : float, optional
        Override for the current epoch time (tests).

    Returns
    -------
    tuple[dict, str]
        The signed parameter mapping and the digest placed in ``sig``.
    """
    signed: Dict[str, str] = {
        key: str(value)
        for key, value in params.items()
        if key != PARAM_SIGNATURE and value is not None and str(value).strip()
    }
    timestamp = int(time.time() if now is None else now)
    signed[PARAM_TIMESTAMP] = str(timestamp)

    digest = compute_digest(canonical_string(signed), secret)
    signed[PARAM_SIGNATURE] = digest
    return signed, digest


def verify_response_signature(
    timestamp: Optional[str],
    body: str,
    supplied_signature: Optional[str],
    secret: str,
    now: Optional[float] = None,
) -> bool:
    """Check a response's signature and freshness.

    Parameters
    ----------
    timestamp : str or None
        The ``timestamp`` field decoded from the response body.
    body : str
        The raw response body, exactly as received.
    supplied_signature : str or None
        Value of the response signature header.
    secret : str
        The application's shared secret.
    now : float, optional
        Override for the current epoch time (tests).

    Returns
    -------
    bool
        ``True`` only if the timestamp is within the skew window and the
        digest matches.
    """
    if not supplied_signature:
        logger.debug("Response carries no signature")
        return False

    try:
        ts = int(str(timestamp).strip())
    except (TypeError, ValueError):
        logger.debug("Response timestamp missing or unparseable: %r", timestamp)
        return False

    current = int(time.time() if now is None else now)
    if abs(current - ts) > CLOCK_SKEW_SECONDS:
        logger.warning(
            "Response timestamp outside skew window: ts=%d now=%d max_skew=%ds",
            ts, current, CLOCK_SKEW_SECONDS,
        )
        return False

    expected = compute_digest(body, secret)
    return hmac.compare_digest(
        expected.encode("utf-8"),
        supplied_signature.strip().lower().encode("utf-8"),
    )
