import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import utcnow_iso
from app.errors import CodeCollision, ServiceError
from app.models.short_link import ShortLink
from app.services.codegen_service import CodeAllocator, code_allocator

logger = logging.getLogger("app.links")

LIST_LIMIT = 200


def short_url_for(code: str) -> str:
    return f"{settings.base_url.rstrip('/')}/{code}"


def create_link(
    db: Session,
    original_url: str,
    visitor_id: str | None,
    ip_hash: str | None,
    allocator: CodeAllocator = code_allocator,
) -> dict:
    # End the rate-limit read snapshot; SQLite cannot upgrade it to a write
    # once the allocation transaction has committed on another connection.
    db.rollback()
    allocation = allocator.allocate()
    code = allocation["code"]
    link = ShortLink(
        short_code=code,
        original_url=original_url,
        created_at=utcnow_iso(),
        visitor_id=visitor_id,
        ip_hash=ip_hash,
        usage_count=0,
    )
    try:
        db.add(link)
        db.commit()
    except IntegrityError as exc:
        # The code is bound to an existing row, so it must not be recycled.
        # The caller retries; looping here would hold allocation locks.
        db.rollback()
        logger.error("Short code %r already bound on insert: %s", code, exc)
        raise CodeCollision() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to persist short link %r", code)
        allocator.release_quietly(code)
        raise ServiceError() from exc

    return {
        "code": code,
        "short_url": short_url_for(code),
        "original_url": original_url,
        "reused": allocation["reused"],
    }


def resolve_link(db: Session, code: str) -> str | None:
    """Return the destination for ``code`` and record the visit."""
    result = db.execute(
        update(ShortLink)
        .where(ShortLink.short_code == code)
        .values(usage_count=ShortLink.usage_count + 1, last_accessed=utcnow_iso())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        return None
    original = db.execute(
        select(ShortLink.original_url).where(ShortLink.short_code == code)
    ).scalar_one()
    db.commit()
    return original


def list_links(db: Session, visitor_id: str) -> list[ShortLink]:
    return list(db.execute(
        select(ShortLink)
        .where(ShortLink.visitor_id == visitor_id)
        .order_by(ShortLink.created_at.desc())
        .limit(LIST_LIMIT)
    ).scalars())


def delete_link(
    db: Session,
    code: str,
    visitor_id: str,
    allocator: CodeAllocator = code_allocator,
) -> bool:
    result = db.execute(
        delete(ShortLink).where(ShortLink.short_code == code, ShortLink.visitor_id == visitor_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 0:
        return False
    allocator.release_quietly(code)
    return True
