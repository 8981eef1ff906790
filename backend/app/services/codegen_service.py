"""Short-code allocation with recycling.

Allocation order: the shortest (then lexicographically smallest) recycled
code, otherwise the next never-issued index from the cursor. Both paths run in
one transaction on the locking session factory; recycled rows are locked
before the cursor row in every allocation so concurrent allocators cannot
deadlock on lock order.
"""

import logging
import threading
from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import Settings, settings
from app.database import AllocationSessionLocal
from app.errors import (
    AllocationExhausted,
    CodegenError,
    ConfigurationError,
    ServiceError,
    ServiceUnavailable,
)
from app.services.allocation_store import AllocationStore
from app.utils.codes import RESERVED_CODES, index_to_code

logger = logging.getLogger("app.codegen")

RECYCLED_BATCH = 10


class CodeAllocator:
    def __init__(
        self,
        session_factory: sessionmaker = AllocationSessionLocal,
        config: Settings = settings,
        reserved: frozenset[str] = RESERVED_CODES,
    ):
        self._session_factory = session_factory
        self._config = config
        self.reserved = reserved
        # Per-process throttle on connection pool pressure; cross-process
        # exclusion comes from the database locks.
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _enter(self):
        ceiling = self._config.max_concurrent_allocations
        with self._in_flight_lock:
            if self._in_flight >= ceiling:
                logger.error("Concurrent allocation limit reached: %s/%s", self._in_flight, ceiling)
                raise ServiceUnavailable()
            self._in_flight += 1

    def _exit(self):
        with self._in_flight_lock:
            self._in_flight -= 1

    def allocate(self) -> dict:
        """Return ``{"code": str, "reused": bool}`` for a newly issued code."""
        self._enter()
        try:
            return self._allocate()
        finally:
            self._exit()

    def _allocate(self) -> dict:
        try:
            with self._session_factory() as db, db.begin():
                store = AllocationStore(db)
                store.apply_lock_timeout(self._config.lock_timeout_seconds)
                return self._allocate_in(store)
        except ServiceUnavailable:
            raise
        except ConfigurationError as exc:
            logger.error("Allocation store misconfigured: %s", exc.detail)
            raise
        except CodegenError as exc:
            # Enumerator failures (exhausted code space) are not retryable.
            logger.error("Code allocation failed: %s", exc.detail)
            raise ServiceError() from exc
        except OperationalError as exc:
            logger.error("Transient database failure during code allocation: %s", exc)
            raise ServiceUnavailable() from exc
        except SQLAlchemyError as exc:
            logger.exception("Unexpected database error during code allocation")
            raise ServiceError() from exc

    def _allocate_in(self, store: AllocationStore) -> dict:
        for code, _length in store.peek_smallest_recycled(RECYCLED_BATCH):
            if code in self.reserved:
                continue
            store.remove_from_recycled(code)
            return {"code": code, "reused": True}

        index = store.lock_cursor()
        code = index_to_code(index)
        retries = 0
        while code in self.reserved:
            retries += 1
            if retries > self._config.code_allocation_retries:
                logger.error(
                    "Exceeded retry limit (%s) skipping reserved codes at index %s",
                    self._config.code_allocation_retries,
                    index,
                )
                raise AllocationExhausted()
            index += 1
            code = index_to_code(index)

        store.advance_cursor(index + 1)
        return {"code": code, "reused": False}

    def release(self, code: str | None):
        """Return ``code`` to the recycle pool. Reserved and empty codes are ignored."""
        if not code or code in self.reserved:
            return
        try:
            with self._session_factory() as db, db.begin():
                AllocationStore(db).add_to_recycled(code, len(code))
        except OperationalError as exc:
            logger.error("Transient database failure recycling %r: %s", code, exc)
            raise ServiceUnavailable() from exc
        except SQLAlchemyError as exc:
            logger.exception("Unexpected database error recycling %r", code)
            raise ServiceError() from exc

    def release_quietly(self, code: str | None):
        """Compensating release: failures are logged and never propagate."""
        try:
            self.release(code)
        except CodegenError:
            logger.error("Compensating release of %r failed; code stays unavailable", code)

    def metrics(self) -> dict:
        return {
            "concurrent_allocations": self._in_flight,
            "max_concurrent_allocations": self._config.max_concurrent_allocations,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


code_allocator = CodeAllocator()

