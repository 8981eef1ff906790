from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.config import Settings
from app.database import utcnow_iso
from app.errors import ServiceError
from app.models.short_link import ShortLink
from app.services.codegen_service import CodeAllocator
from app.services.prune_service import Pruner

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _add(session_factory, code, created_days_ago, accessed_days_ago=None):
    with session_factory() as db:
        db.add(ShortLink(
            short_code=code,
            original_url=f"https://example.com/{code}",
            created_at=utcnow_iso(NOW - timedelta(days=created_days_ago)),
            last_accessed=(
                utcnow_iso(NOW - timedelta(days=accessed_days_ago)) if accessed_days_ago is not None else None
            ),
            usage_count=0 if accessed_days_ago is None else 1,
        ))
        db.commit()


def _codes(session_factory) -> set[str]:
    with session_factory() as db:
        return set(db.execute(select(ShortLink.short_code)).scalars())


class TestPruneOnce:
    def test_stale_link_deleted_and_code_reused(self, test_db, allocator, test_pruner):
        for _ in range(3):
            allocator.allocate()
        _add(test_db, "a", created_days_ago=200, accessed_days_ago=120)
        _add(test_db, "b", created_days_ago=200, accessed_days_ago=1)
        _add(test_db, "c", created_days_ago=5)

        result = test_pruner.prune_once(now=NOW)

        assert result.affected == 1
        assert _codes(test_db) == {"b", "c"}
        assert allocator.allocate() == {"code": "a", "reused": True}

    def test_never_accessed_falls_back_to_created_at(self, test_db, allocator, test_pruner):
        for _ in range(2):
            allocator.allocate()
        _add(test_db, "a", created_days_ago=91)
        _add(test_db, "b", created_days_ago=89)

        assert test_pruner.prune_once(now=NOW).affected == 1
        assert _codes(test_db) == {"b"}

    def test_processes_every_batch(self, test_db, allocator, tmp_path):
        config = Settings(data_dir=tmp_path, prune_batch_size=2)
        pruner = Pruner(session_factory=test_db, allocator=allocator, config=config)
        codes = [allocator.allocate()["code"] for _ in range(5)]
        for i, code in enumerate(codes):
            _add(test_db, code, created_days_ago=100 + i)

        result = pruner.prune_once(now=NOW)

        assert result.affected == 5
        assert _codes(test_db) == set()
        # Oldest first, but all five end up in the pool.
        assert sorted(allocator.allocate()["code"] for _ in range(5)) == sorted(codes)

    def test_failed_item_does_not_abort_batch(self, test_db, allocation_sessions, test_settings):
        class FlakyAllocator(CodeAllocator):
            def release(self, code):
                if code == "b":
                    raise ServiceError("pool unavailable")
                super().release(code)

        allocator = FlakyAllocator(allocation_sessions, test_settings)
        pruner = Pruner(session_factory=test_db, allocator=allocator, config=test_settings)
        for _ in range(3):
            allocator.allocate()
        for code in ("a", "b", "c"):
            _add(test_db, code, created_days_ago=365)

        result = pruner.prune_once(now=NOW)

        assert result.failed == 1
        assert result.affected == 2
        assert _codes(test_db) == set()

    def test_nothing_stale(self, test_db, test_pruner):
        _add(test_db, "a", created_days_ago=1)
        result = test_pruner.prune_once(now=NOW)
        assert result.affected == 0
        assert _codes(test_db) == {"a"}


class TestMaybeRun:
    def test_throttled_to_interval(self, test_db, test_pruner):
        _add(test_db, "a", created_days_ago=365)
        first = test_pruner.maybe_run(now=NOW)
        assert not first.skipped
        assert first.affected == 1

        _add(test_db, "b", created_days_ago=365)
        second = test_pruner.maybe_run(now=NOW)
        assert second.skipped
        assert _codes(test_db) == {"b"}

    def test_never_raises(self, test_db, allocator, test_settings, monkeypatch):
        pruner = Pruner(session_factory=test_db, allocator=allocator, config=test_settings)

        def explode(now=None):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(pruner, "prune_once", explode)
        result = pruner.maybe_run()
        assert result.failed == 1
