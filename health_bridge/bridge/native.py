"""Adapters between callback-style native health SDKs and asyncio.

Native bridges report completion through a callback of the form
``callback(result, error)``, frequently from a thread the SDK owns.  The
helpers here turn each such call into a single awaitable, and keep track of
in-flight native queries so they can be stopped on cleanup.

The Protocols describe the native bridge objects a host application injects
for each on-device backend.  Values cross the boundary as plain dicts.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, Protocol

from health_bridge.bridge.base import NativeCallError

logger = logging.getLogger("health_bridge.bridge.native")

Completion = Callable[..., None]

# HealthKit sample queries treat a zero limit as uncapped.
NO_LIMIT = 0


# ---------------------------------------------------------------------------
# Callback → awaitable
# ---------------------------------------------------------------------------


async def await_callback(
    register: Callable[[Completion], Any],
    timeout: float | None = None,
) -> Any:
    """Run a native call that reports through a completion callback.

    ``register`` is invoked with a completion function and must start the
    native call.  The completion may be called from any thread and more than
    once; only the first call resolves the awaitable.

    Args:
        register: Starts the native call, passing it the completion.
        timeout:  Seconds to wait before giving up, or None to wait forever.

    Returns:
        The ``result`` argument of the first completion.

    Raises:
        NativeCallError: The completion reported an error.
        asyncio.TimeoutError: No completion arrived within ``timeout``.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _resolve(result: Any, error: Any) -> None:
        if future.done():
            return
        if error is None:
            future.set_result(result)
        elif isinstance(error, BaseException):
            future.set_exception(NativeCallError(str(error) or type(error).__name__))
        else:
            future.set_exception(NativeCallError(str(error)))

    def completion(result: Any = None, error: Any = None) -> None:
        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # Event loop already closed; nobody is waiting any more.
            logger.debug("Dropped native completion after loop shutdown")

    register(completion)
    return await asyncio.wait_for(future, timeout)


# ---------------------------------------------------------------------------
# In-flight query tracking
# ---------------------------------------------------------------------------


class ActiveQueryTracker:
    """Registry of running native queries with self-expiring entries.

    Every tracked query is dropped after ``timeout`` seconds even when its
    completion never fires, so the tracker cannot grow without bound.
    """

    def __init__(self, timeout: float) -> None:
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._queries: dict[int, tuple[Any, asyncio.TimerHandle]] = {}

    def __len__(self) -> int:
        return len(self._queries)

    def track(self, query: Any) -> int:
        """Start tracking ``query`` and return its token.  Needs a running loop."""
        loop = asyncio.get_running_loop()
        token = next(self._ids)
        handle = loop.call_later(self._timeout, self._expire, token)
        self._queries[token] = (query, handle)
        return token

    def release(self, token: int) -> None:
        entry = self._queries.pop(token, None)
        if entry is not None:
            entry[1].cancel()

    def _expire(self, token: int) -> None:
        if self._queries.pop(token, None) is not None:
            logger.warning(
                "Native query %d abandoned after %.0fs without completion",
                token, self._timeout,
            )

    def stop_all(self, stop: Callable[[Any], None]) -> int:
        """Stop and forget every tracked query.

        Failures stopping one query are logged and do not prevent the rest
        from being stopped.

        Returns:
            Number of queries that were tracked.
        """
        entries = list(self._queries.values())
        self._queries.clear()
        for query, handle in entries:
            handle.cancel()
            try:
                stop(query)
            except Exception:
                logger.exception("Failed to stop native query %r", query)
        return len(entries)


# ---------------------------------------------------------------------------
# Native bridge protocols
# ---------------------------------------------------------------------------


class SamsungHealthStore(Protocol):
    """Samsung Health data store.

    Permissions are ``(data_type, access)`` pairs where access is ``"read"``
    or ``"write"``.  Records are dicts with ``value``, ``start_time``,
    ``end_time`` (epoch ms) and free-form extras.
    """

    def installed_version(self) -> int | None: ...

    def connect(self, completion: Completion) -> None: ...

    def disconnect(self) -> None: ...

    def get_granted_permissions(
        self, permissions: set[tuple[str, str]], completion: Completion
    ) -> None: ...

    def request_permissions(
        self, permissions: set[tuple[str, str]], ui_context: Any, completion: Completion
    ) -> None: ...

    def read_data(
        self, data_type: str, start_ms: int, end_ms: int, limit: int, completion: Completion
    ) -> None: ...

    def aggregate_data(
        self, data_type: str, start_ms: int, end_ms: int, completion: Completion
    ) -> None: ...

    def insert_data(self, data_type: str, record: dict, completion: Completion) -> None: ...


class HealthKitStore(Protocol):
    """HealthKit store.

    ``authorization_status`` returns ``"notDetermined"``, ``"sharingDenied"``
    or ``"sharingAuthorized"`` and only describes write (share) access.
    Query methods return a handle accepted by ``stop_query``.  A
    ``sample_query`` limit of ``NO_LIMIT`` returns every sample in the window.
    """

    def is_health_data_available(self) -> bool: ...

    def authorization_status(self, type_identifier: str) -> str: ...

    def request_authorization(
        self, share: set[str], read: set[str], completion: Completion
    ) -> None: ...

    def sample_query(
        self,
        type_identifier: str,
        start_ms: int,
        end_ms: int,
        limit: int,
        completion: Completion,
    ) -> Any: ...

    def statistics_query(
        self,
        type_identifier: str,
        start_ms: int,
        end_ms: int,
        anchor_ms: int,
        completion: Completion,
    ) -> Any: ...

    def save(self, sample: dict, completion: Completion) -> None: ...

    def stop_query(self, query: Any) -> None: ...


class HuaweiHealthKit(Protocol):
    """Huawei Health Kit (on-device).

    ``scopes`` are HealthKit scope URIs.  ``read`` returns sample points as
    dicts with ``start_time``/``end_time`` (epoch ms) and a ``fields`` map.
    """

    def get_health_app_authorization(self, completion: Completion) -> None: ...

    def get_granted_scopes(self, completion: Completion) -> None: ...

    def request_authorization(
        self, scopes: list[str], ui_context: Any, completion: Completion
    ) -> None: ...

    def cancel_authorization(self, completion: Completion) -> None: ...

    def read(
        self, data_type: str, start_ms: int, end_ms: int, completion: Completion
    ) -> None: ...
