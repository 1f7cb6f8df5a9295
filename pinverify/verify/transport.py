# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Signed HTTP transport for the verification service.

Two-phase call: :meth:`TransportClient.open` signs the parameters and
builds the outgoing GET request, :meth:`TransportClient.execute` sends it
and returns the raw body together with the response signature header.
The transport never retries and never interprets the body; result-code
handling belongs to the operation services.

Every failure below the protocol layer (connection refused, DNS,
timeout, non-200 status, empty body) is raised as
:class:`~pinverify.verify.exceptions.TransportError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from pinverify.config import (
    CONNECT_TIMEOUT_SECONDS,
    HEADER_CONTENT_ENCODING,
    HEADER_OS_FAMILY,
    HEADER_OS_REVISION,
    HEADER_SDK_REVISION,
    MAX_CONCURRENT_REQUESTS,
    PARAMS_ENCODING,
    READ_TIMEOUT_SECONDS,
    RESPONSE_SIGNATURE_HEADER,
    SDK_REVISION,
)
from pinverify.verify.environment import ClientEnvironment
from pinverify.verify.exceptions import TransportError
from pinverify.verify.signing import sign_request

logger = logging.getLogger(__name__)

__all__ = ["OutboundRequest", "SignedResponse", "TransportClient"]


@dataclass(frozen=True)
class OutboundRequest:
    """Unsigned request: a method path plus its parameters."""

    method: str
    params: Mapping[str, Optional[str]]


@dataclass(frozen=True)
class SignedResponse:
    """Raw response body and the signature header that accompanied it."""

    body: str
    signature: Optional[str]


class TransportClient:
    """Sign, send and receive requests against one endpoint.

    The underlying :class:`httpx.AsyncClient` is created lazily unless one
    is supplied.  An injected ``transport`` (e.g. ``httpx.MockTransport``)
    is passed through to the client it creates.
    """

    def __init__(
        self,
        environment: ClientEnvironment,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_concurrent: int = MAX_CONCURRENT_REQUESTS,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        read_timeout: float = READ_TIMEOUT_SECONDS,
    ):
        self._environment = environment
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)

    @property
    def environment(self) -> ClientEnvironment:
        return self._environment

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> dict:
        return {
            HEADER_OS_FAMILY: self._environment.os_family,
            HEADER_OS_REVISION: self._environment.os_revision,
            HEADER_SDK_REVISION: SDK_REVISION,
            HEADER_CONTENT_ENCODING: PARAMS_ENCODING,
        }

    def open(self, request: OutboundRequest) -> httpx.Request:
        """Sign *request* and build the outgoing HTTP request.

        Parameters
        ----------
        request : OutboundRequest
            Method path and parameters; ``None`` values are dropped.

        Returns
        -------
        httpx.Request
            A GET request with URL-encoded, signed query parameters.
        """
        params, _ = sign_request(request.params, self._environment.shared_secret)
        url = self._environment.endpoint + request.method
        logger.debug("Opening %s with %d params", request.method, len(params))
        return self._get_client().build_request(
            "GET",
            url,
            params=params,
            headers=self._headers(),
            timeout=self._timeout,
        )

    async def execute(self, handle: httpx.Request) -> SignedResponse:
        """Send *handle* and return its body and signature header.

        Raises
        ------
        TransportError
            On connection failure, timeout, non-200 status or empty body.
        """
        path = handle.url.path
        async with self._semaphore:
            response: Optional[httpx.Response] = None
            try:
                response = await self._get_client().send(handle, stream=True)
                if response.status_code != 200:
                    raise TransportError(
                        f"Request to {path} returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                raw = await response.aread()
            except httpx.TimeoutException as exc:
                raise TransportError(f"Request to {path} timed out: {exc}") from exc
            except httpx.HTTPError as exc:
                raise TransportError(f"HTTP error calling {path}: {exc}") from exc
            finally:
                if response is not None:
                    await response.aclose()

        body = raw.decode(response.encoding or "utf-8", errors="replace")
        if not body.strip():
            raise TransportError(f"Empty response body from {path}", status_code=200)

        logger.debug("Received %d bytes from %s", len(raw), path)
        return SignedResponse(body=body, signature=response.headers.get(RESPONSE_SIGNATURE_HEADER))

    async def call(self, request: OutboundRequest) -> SignedResponse:
        return await self.execute(self.open(request))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
