import itertools
from datetime import datetime, timedelta, timezone

from app.config import Settings
from app.database import utcnow_iso
from app.models.short_link import ShortLink
from app.services.rate_limit_service import check_allowed

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_codes = itertools.count()


def _add_links(session_factory, count, visitor_id="v1", ip_hash="ip1", at=NOW):
    with session_factory() as db:
        for _ in range(count):
            db.add(ShortLink(
                short_code=f"rl{next(_codes)}",
                original_url="https://example.com",
                created_at=utcnow_iso(at),
                visitor_id=visitor_id,
                ip_hash=ip_hash,
                usage_count=0,
            ))
        db.commit()


class TestRateLimit:
    def _config(self, tmp_path, **overrides):
        values = {"link_shortener_per_hour": 3, "link_shortener_global_per_hour": 10, "rate_limit_window_minutes": 60}
        values.update(overrides)
        return Settings(data_dir=tmp_path, **values)

    def test_allows_under_limit(self, test_db, tmp_path):
        _add_links(test_db, 2, at=NOW - timedelta(minutes=5))
        with test_db() as db:
            status = check_allowed(db, "v1", "ip1", now=NOW, config=self._config(tmp_path))
        assert status.allowed
        assert status.per_visitor_count == 2
        assert status.per_address_count == 2
        assert status.global_count == 2

    def test_denies_at_per_visitor_limit(self, test_db, tmp_path):
        _add_links(test_db, 3, ip_hash="other-ip", at=NOW - timedelta(minutes=10))
        with test_db() as db:
            status = check_allowed(db, "v1", "ip1", now=NOW, config=self._config(tmp_path))
        assert not status.allowed
        assert not status.caller_allowed
        assert status.global_allowed
        assert status.per_visitor_count == 3
        assert status.per_address_count == 0

    def test_denies_at_per_address_limit(self, test_db, tmp_path):
        _add_links(test_db, 3, visitor_id="someone-else", ip_hash="ip1", at=NOW - timedelta(minutes=10))
        with test_db() as db:
            status = check_allowed(db, "v1", "ip1", now=NOW, config=self._config(tmp_path))
        assert not status.caller_allowed
        assert status.per_address_count == 3

    def test_admits_again_after_window_slides(self, test_db, tmp_path):
        _add_links(test_db, 3, at=NOW - timedelta(minutes=30))
        config = self._config(tmp_path)
        with test_db() as db:
            assert not check_allowed(db, "v1", "ip1", now=NOW, config=config).allowed
            later = check_allowed(db, "v1", "ip1", now=NOW + timedelta(minutes=31), config=config)
        assert later.allowed
        assert later.per_visitor_count == 0

    def test_global_ceiling(self, test_db, tmp_path):
        for n in range(5):
            _add_links(test_db, 2, visitor_id=f"v{n + 10}", ip_hash=f"ip{n + 10}", at=NOW - timedelta(minutes=1))
        with test_db() as db:
            status = check_allowed(db, "fresh", "fresh-ip", now=NOW, config=self._config(tmp_path))
        assert status.caller_allowed
        assert not status.global_allowed
        assert not status.allowed
        assert status.global_count == 10

    def test_window_width_is_configurable(self, test_db, tmp_path):
        _add_links(test_db, 3, at=NOW - timedelta(minutes=20))
        with test_db() as db:
            status = check_allowed(db, "v1", "ip1", now=NOW, config=self._config(tmp_path, rate_limit_window_minutes=15))
        assert status.allowed
        assert status.window_minutes == 15

    def test_missing_address_counts_nothing(self, test_db, tmp_path):
        _add_links(test_db, 3, visitor_id="anon", ip_hash=None, at=NOW - timedelta(minutes=1))
        with test_db() as db:
            status = check_allowed(db, "v1", None, now=NOW, config=self._config(tmp_path))
        assert status.per_address_count == 0
        assert status.allowed
