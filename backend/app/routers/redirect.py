import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.link_service import resolve_link
from app.utils.codes import MAX_CODE_LENGTH, RESERVED_CODES
from app.utils.url_validation import normalize_url

logger = logging.getLogger("app.redirect")

router = APIRouter(tags=["redirect"])


# Registered last so fixed routes always win over a code of the same name.
@router.get("/{code}")
async def follow_link(code: str, db: Session = Depends(get_db)):
    if not code or len(code) > MAX_CODE_LENGTH or code in RESERVED_CODES:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        original = resolve_link(db, code)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Redirect lookup failed for %r", code)
        raise HTTPException(status_code=500, detail="Server error")
    if original is None:
        raise HTTPException(status_code=404, detail="Not found")
    return RedirectResponse(normalize_url(original), status_code=302)
