# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Client environment: credentials, endpoint selection and device properties.

The verification client never discovers device identity on its own.
The host application injects a device-id provider; source IP and
language default to best-effort providers that return ``None`` when the
value cannot be determined, in which case the parameter is omitted from
requests.
"""

from __future__ import annotations

import locale
import logging
import os
import platform
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from pinverify.config import ENDPOINT_PRODUCTION, ENDPOINT_SANDBOX, OS_FAMILY
from pinverify.verify.exceptions import ClientConfigError, NoDeviceIdError

logger = logging.getLogger(__name__)

__all__ = [
    "ClientEnvironment",
    "Environment",
    "default_language",
    "default_source_ip",
    "redact",
]

Provider = Callable[[], Optional[str]]


class Environment(str, Enum):
    PRODUCTION = "production"
    SANDBOX = "sandbox"

    @property
    def base_url(self) -> str:
        if self is Environment.PRODUCTION:
            return ENDPOINT_PRODUCTION
        return ENDPOINT_SANDBOX


def redact(value: Optional[str], keep: int = 4) -> str:
    """Return a log-safe rendering of a secret, token or PIN."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}..."


def default_source_ip() -> Optional[str]:
    """Primary IPv4 address of this host, or ``None``.

    Connecting a UDP socket selects a route without sending any packet.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("192.0.2.1", 80))
        address = sock.getsockname()[0]
    except OSError as exc:
        logger.debug("Source IP unavailable: %s", exc)
        return None
    finally:
        sock.close()
    if not address or address.startswith("0."):
        return None
    return address


def default_language() -> Optional[str]:
    """Process locale as a language tag (``en_US`` -> ``en-US``)."""
    try:
        lang = locale.getlocale()[0]
    except ValueError:
        lang = None
    if not lang or lang in ("C", "POSIX"):
        return None
    return lang.split(".")[0].replace("_", "-")


def _os_revision() -> str:
    return platform.release() or "unknown"


def _optional_property(provider: Provider, name: str) -> Optional[str]:
    """Call a provider for an optional device property; failures yield ``None``."""
    try:
        value = provider()
    except Exception as exc:
        logger.warning("Device %s provider failed: %s", name, exc)
        return None
    return value or None


@dataclass
class ClientEnvironment:
    """Per-application configuration shared by every request.

    Attributes
    ----------
    app_id : str
        Application identifier issued by the verification service.
    shared_secret : str
        Secret used to sign requests and verify responses.  Never logged.
    environment : Environment
        Selects the production or sandbox endpoint.
    base_url : str, optional
        Explicit endpoint override; takes precedence over ``environment``.
    device_id_provider : callable
        Returns the device identifier, or ``None`` when unavailable.
    source_ip_provider : callable
        Returns the device's IP address, or ``None``.
    language_provider : callable
        Returns a language tag such as ``en-US``, or ``None``.
    push_token : str, optional
        Push notification token forwarded on verify requests.
    """

    app_id: str
    shared_secret: str
    device_id_provider: Provider
    environment: Environment = Environment.PRODUCTION
    base_url: Optional[str] = None
    source_ip_provider: Provider = default_source_ip
    language_provider: Provider = default_language
    push_token: Optional[str] = None
    os_family: str = OS_FAMILY
    os_revision: str = field(default_factory=_os_revision)

    def __post_init__(self) -> None:
        if not self.app_id or not self.app_id.strip():
            raise ClientConfigError("Application id is required")
        if not self.shared_secret or not self.shared_secret.strip():
            raise ClientConfigError("Shared secret is required")
        if not self.endpoint:
            raise ClientConfigError(
                f"No endpoint configured for environment '{self.environment.value}'"
            )

    @property
    def endpoint(self) -> str:
        url = self.base_url or self.environment.base_url
        if url and not url.endswith("/"):
            url += "/"
        return url

    def device_id(self) -> str:
        """Resolve the device identifier.

        Raises
        ------
        NoDeviceIdError
            If the provider fails or returns nothing.
        """
        try:
            value = self.device_id_provider()
        except Exception as exc:
            raise NoDeviceIdError(f"Device id provider failed: {exc}") from exc
        if not value or not value.strip():
            raise NoDeviceIdError("Device id provider returned no value")
        return value

    def source_ip(self) -> Optional[str]:
        return _optional_property(self.source_ip_provider, "source IP")

    def language(self) -> Optional[str]:
        return _optional_property(self.language_provider, "language")

    @classmethod
    def from_env(cls) -> "ClientEnvironment":
        """Build an environment from ``PINVERIFY_*`` variables."""
        env_name = os.getenv("PINVERIFY_ENVIRONMENT", Environment.PRODUCTION.value).lower()
        try:
            environment = Environment(env_name)
        except ValueError as exc:
            raise ClientConfigError(f"Unknown environment: {env_name}") from exc

        device_id = os.getenv("PINVERIFY_DEVICE_ID") or None
        return cls(
            app_id=os.getenv("PINVERIFY_APP_ID", ""),
            shared_secret=os.getenv("PINVERIFY_SHARED_SECRET", ""),
            device_id_provider=lambda: device_id,
            environment=environment,
            base_url=os.getenv("PINVERIFY_BASE_URL") or None,
            push_token=os.getenv("PINVERIFY_PUSH_TOKEN") or None,
        )

    def __repr__(self) -> str:
        return (
            f"ClientEnvironment(app_id={self.app_id!r}, "
            f"shared_secret={redact(self.shared_secret)!r}, "
            f"endpoint={self.endpoint!r})"
        )
