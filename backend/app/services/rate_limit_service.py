from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.database import utcnow_iso
from app.models.short_link import ShortLink
from app.schemas.link import RateLimitStatus


def window_start(window_minutes: int, now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    return utcnow_iso(current - timedelta(minutes=window_minutes))


def check_allowed(
    db: Session,
    visitor_id: str | None,
    ip_hash: str | None,
    now: datetime | None = None,
    config: Settings = settings,
) -> RateLimitStatus:
    # Read-only: a race between this check and the insert can overshoot the
    # limit by the number of concurrent creators.
    since = window_start(config.rate_limit_window_minutes, now)
    by_visitor = func.coalesce(func.sum(case((ShortLink.visitor_id == visitor_id, 1), else_=0)), 0)
    by_ip = func.coalesce(func.sum(case((ShortLink.ip_hash == ip_hash, 1), else_=0)), 0)
    row = db.execute(
        select(by_visitor, by_ip, func.count()).where(ShortLink.created_at >= since)
    ).one()

    per_visitor_count = int(row[0]) if visitor_id else 0
    per_address_count = int(row[1]) if ip_hash else 0
    global_count = int(row[2])

    caller_allowed = (
        per_visitor_count < config.link_shortener_per_hour
        and per_address_count < config.link_shortener_per_hour
    )
    global_allowed = global_count < config.link_shortener_global_per_hour

    return RateLimitStatus(
        allowed=caller_allowed and global_allowed,
        caller_allowed=caller_allowed,
        global_allowed=global_allowed,
        per_visitor_count=per_visitor_count,
        per_address_count=per_address_count,
        global_count=global_count,
        limit=config.link_shortener_per_hour,
        global_limit=config.link_shortener_global_per_hour,
        window_minutes=config.rate_limit_window_minutes,
    )
