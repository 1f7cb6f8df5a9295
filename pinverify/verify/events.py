# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Event sink interface and the listener registry that fans events out.

Host applications subclass :class:`EventSink` and override the callbacks
they care about; each method may be a plain function or a coroutine.
A :class:`ListenerRegistry` owns the set of registered sinks.  Each
notification iterates a snapshot taken under the registry lock, so
listeners may add or remove listeners from inside a callback.  Before
each delivery the listener's membership is re-checked, so a listener
whose ``remove()`` has returned is never notified again.  A listener
that raises is logged and does not stop delivery to the others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, List, Optional, Union

from pinverify.verify.models import Command, SessionState, UserStatus, VerifyError

logger = logging.getLogger(__name__)

__all__ = ["EventSink", "ListenerRegistry"]


class EventSink:
    """Receives verification outcomes.  All methods default to no-ops."""

    def on_status_changed(self, status: SessionState, message: str) -> Any:
        pass

    def on_error(self, error: VerifyError, message: str) -> Any:
        pass

    def on_network_exception(self, exc: BaseException) -> Any:
        pass

    def on_command_result(
        self,
        command: Union[Command, str],
        success: bool,
        error: Optional[VerifyError],
        message: Optional[str],
    ) -> Any:
        pass

    def on_user_status(self, country_code: str, phone_number: str, status: UserStatus) -> Any:
        pass


class ListenerRegistry(EventSink):
    """Lock-guarded set of sinks, itself usable as a single sink."""

    def __init__(self) -> None:
        self._listeners: List[EventSink] = []
        self._lock = asyncio.Lock()

    async def add(self, listener: EventSink) -> None:
        async with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    async def remove(self, listener: EventSink) -> bool:
        async with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return False
            return True

    async def clear(self) -> None:
        async with self._lock:
            self._listeners.clear()

    async def snapshot(self) -> List[EventSink]:
        async with self._lock:
            return list(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)

    async def _is_registered(self, listener: EventSink) -> bool:
        async with self._lock:
            return listener in self._listeners

    async def _dispatch(self, name: str, *args: Any) -> None:
        for listener in await self.snapshot():
            # removed by an earlier listener or concurrently
            if not await self._is_registered(listener):
                continue
            try:
                result = getattr(listener, name)(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener %r failed in %s", listener, name)

    async def on_status_changed(self, status: SessionState, message: str) -> None:
        await self._dispatch("on_status_changed", status, message)

    async def on_error(self, error: VerifyError, message: str) -> None:
        await self._dispatch("on_error", error, message)

    async def on_network_exception(self, exc: BaseException) -> None:
        await self._dispatch("on_network_exception", exc)

    async def on_command_result(
        self,
        command: Union[Command, str],
        success: bool,
        error: Optional[VerifyError],
        message: Optional[str],
    ) -> None:
        await self._dispatch("on_command_result", command, success, error, message)

    async def on_user_status(self, country_code: str, phone_number: str, status: UserStatus) -> None:
        await self._dispatch("on_user_status", country_code, phone_number, status)
