import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import Settings, settings
from app.database import SessionLocal, utcnow_iso
from app.errors import CodegenError
from app.models.short_link import ShortLink
from app.schemas.link import PruneResult
from app.services.codegen_service import CodeAllocator, code_allocator

logger = logging.getLogger("app.prune")


class Pruner:
    """Deletes links unused past the retention period and recycles their codes."""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        allocator: CodeAllocator = code_allocator,
        config: Settings = settings,
    ):
        self._session_factory = session_factory
        self._allocator = allocator
        self._config = config
        self._last_run = None
        self._run_lock = threading.Lock()

    def _stale_codes(self, cutoff: str, limit: int) -> list[str]:
        last_used = func.coalesce(ShortLink.last_accessed, ShortLink.created_at)
        with self._session_factory() as db:
            rows = db.execute(
                select(ShortLink.short_code)
                .where(last_used < cutoff)
                .order_by(last_used.asc(), ShortLink.short_code.asc())
                .limit(limit)
            ).all()
        return [row[0] for row in rows]

    def _prune_code(self, code: str, cutoff: str) -> bool:
        last_used = func.coalesce(ShortLink.last_accessed, ShortLink.created_at)
        with self._session_factory() as db, db.begin():
            # Re-checked at delete time: a visit since the scan keeps the link.
            result = db.execute(
                delete(ShortLink).where(ShortLink.short_code == code, last_used < cutoff)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount > 0
        # The binding is gone before the code can be handed out again.
        if deleted:
            self._allocator.release(code)
        return deleted

    def prune_once(self, now: datetime | None = None) -> PruneResult:
        current = now or datetime.now(timezone.utc)
        cutoff = utcnow_iso(current - timedelta(days=self._config.delete_unused_after_days))
        batch_size = self._config.prune_batch_size
        result = PruneResult()
        failed_codes: set[str] = set()

        while True:
            try:
                batch = [c for c in self._stale_codes(cutoff, batch_size + len(failed_codes))
                         if c not in failed_codes]
            except SQLAlchemyError:
                logger.exception("Prune scan failed")
                break
            if not batch:
                break
            for code in batch[:batch_size]:
                try:
                    if self._prune_code(code, cutoff):
                        result.affected += 1
                except (SQLAlchemyError, CodegenError):
                    logger.exception("Failed to prune short link %r", code)
                    failed_codes.add(code)
                    result.failed += 1
            if len(batch) < batch_size:
                break

        if result.affected:
            logger.info("Pruned %s stale short links", result.affected)
        return result

    def maybe_run(self, now: datetime | None = None) -> PruneResult:
        """Run :meth:`prune_once` unless it ran within ``prune_interval_seconds``."""
        with self._run_lock:
            tick = time.monotonic()
            if self._last_run is not None and tick - self._last_run < self._config.prune_interval_seconds:
                return PruneResult(skipped=True)
            self._last_run = tick
        try:
            return self.prune_once(now)
        except Exception:
            logger.exception("Prune run failed")
            return PruneResult(skipped=False, failed=1)


pruner = Pruner()
