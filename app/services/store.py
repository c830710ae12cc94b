"""Balance store client.

Built once by the process entry point and passed into every ledger
operation. ``run`` executes a synchronous unit of work against a fresh
session in a worker thread and bounds it with a timeout; timeouts and driver
failures surface as ``StoreUnavailable`` and are never read as "no credits".
A timed out unit of work is never allowed to commit afterwards, so a
reported failure always matches the durable record.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.db import COMMIT_GUARD
from app.metrics import store_op_seconds, store_unavailable_total
from app.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommitAbandoned(RuntimeError):
    """Raised inside a unit of work whose caller has already given up."""


class CommitGuard:
    """Serialises the commit decision against the caller's timeout.

    Once ``abandon`` wins, every later commit raises ``CommitAbandoned`` and
    the session rolls back on close. A commit that started first is allowed
    to finish and its outcome is reported.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self._committing = False

    @contextmanager
    def committing(self) -> Iterator[None]:
        with self._lock:
            if self._abandoned:
                raise CommitAbandoned("caller timed out before commit")
            self._committing = True
        try:
            yield
        finally:
            with self._lock:
                self._committing = False

    def abandon(self) -> bool:
        """Forbid further commits; ``False`` while a commit is in flight."""
        with self._lock:
            if self._committing:
                return False
            self._abandoned = True
            return True


def _log_abandoned(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, CommitAbandoned):
        logger.info("Timed out unit of work rolled back")
    elif exc is not None:
        logger.warning("Timed out unit of work failed: %s", exc)


class BalanceStore:
    def __init__(self, session_factory: sessionmaker, timeout: float = 5.0) -> None:
        self._session_factory = session_factory
        self.timeout = timeout

    def session(self) -> Session:
        return self._session_factory()

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        guard = CommitGuard()

        def _call() -> T:
            with self._session_factory() as db:
                db.info[COMMIT_GUARD] = guard
                return fn(db, *args, **kwargs)

        start = time.perf_counter()
        task = asyncio.ensure_future(asyncio.to_thread(_call))
        try:
            try:
                return await asyncio.wait_for(asyncio.shield(task), self.timeout)
            except asyncio.TimeoutError as exc:
                if not guard.abandon():
                    # commit already in flight; its outcome is the durable one
                    return await task
                task.add_done_callback(_log_abandoned)
                store_unavailable_total.inc()
                logger.error(
                    "Balance store timed out after %.1fs in %s", self.timeout, fn.__name__
                )
                raise StoreUnavailable("Balance store timed out") from exc
        except SQLAlchemyError as exc:
            store_unavailable_total.inc()
            logger.exception("Balance store failure in %s", fn.__name__)
            raise StoreUnavailable() from exc
        finally:
            store_op_seconds.observe(time.perf_counter() - start)

    def dispose(self) -> None:
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()


__all__ = ["BalanceStore", "CommitAbandoned", "CommitGuard"]
