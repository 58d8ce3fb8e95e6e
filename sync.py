"""Optimistic mutation protocol shared by every cache write.

1. ``apply`` mutates the local cache immediately.
2. ``remote`` persists the change; the caller suspends only here.
3. On success ``reconcile`` folds server-confirmed fields back into the cache.
4. On failure or timeout ``revert`` undoes step 1 and the caller gets a
   failed ``MutationResult`` instead of an exception.

``apply``/``revert``/``reconcile`` must locate records by id, never by
position, because completions of concurrent mutations can arrive in any
order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from remote import MonthAlreadyClosed, RecordNotFound, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT = "timeout"
REMOTE = "remote"
CONFLICT = "conflict"
NOT_FOUND = "not_found"


class RemoteTimeout(RemoteError):
    pass


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> MutationResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, code: str = REMOTE) -> MutationResult[T]:
        return cls(ok=False, error=error, code=code)


def error_code(exc: RemoteError) -> str:
    if isinstance(exc, MonthAlreadyClosed):
        return CONFLICT
    if isinstance(exc, RecordNotFound):
        return NOT_FOUND
    return REMOTE


async def call_remote(
    remote: Callable[[], Awaitable[T]], timeout: Optional[float]
) -> T:
    try:
        return await asyncio.wait_for(remote(), timeout)
    except asyncio.TimeoutError as exc:
        raise RemoteTimeout("The server did not respond in time") from exc


async def optimistic(
    name: str,
    *,
    apply: Callable[[], None],
    remote: Callable[[], Awaitable[T]],
    revert: Callable[[], None],
    reconcile: Optional[Callable[[T], None]] = None,
    timeout: Optional[float] = None,
    record_id: Optional[str] = None,
) -> MutationResult[T]:
    apply()
    try:
        value = await call_remote(remote, timeout)
    except RemoteTimeout as exc:
        revert()
        logger.warning(f"mutation_timed_out: kind={name} id={record_id}")
        return MutationResult.failure(str(exc), TIMEOUT)
    except RemoteError as exc:
        revert()
        logger.warning(f"mutation_rolled_back: kind={name} id={record_id} error={exc}")
        return MutationResult.failure(str(exc), error_code(exc))
    except BaseException:
        revert()
        raise

    if reconcile is not None:
        reconcile(value)
    return MutationResult.success(value)
