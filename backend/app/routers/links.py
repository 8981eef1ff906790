from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.dependencies import get_allocator, get_pruner, get_request_context
from app.errors import CodegenError, ServiceUnavailable
from app.schemas.link import (
    LinkCreate,
    LinkCreateResponse,
    LinkListResponse,
    LinkResponse,
    RequestContext,
)
from app.services import link_service
from app.services.codegen_service import CodeAllocator
from app.services.prune_service import Pruner
from app.services.rate_limit_service import check_allowed
from app.utils.url_validation import validate_url

router = APIRouter(prefix="/links", tags=["links"])


def _raise_for(exc: CodegenError):
    status = 503 if isinstance(exc, ServiceUnavailable) else 500
    raise HTTPException(status_code=status, detail=exc.public_message) from exc


@router.post("", response_model=LinkCreateResponse, status_code=201)
async def create_link(
    req: LinkCreate,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    allocator: CodeAllocator = Depends(get_allocator),
    prune: Pruner = Depends(get_pruner),
    db: Session = Depends(get_db),
):
    try:
        original_url = validate_url(req.url, max_length=settings.max_url_length)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    status = check_allowed(db, ctx.visitor_id, ctx.ip_hash)
    if not status.caller_allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit reached: at most {status.limit} links per "
                   f"{status.window_minutes} minutes. Try again later.",
        )
    if not status.global_allowed:
        raise HTTPException(
            status_code=429,
            detail="The service is at capacity. Try again later.",
        )

    try:
        result = link_service.create_link(db, original_url, ctx.visitor_id, ctx.ip_hash, allocator=allocator)
    except CodegenError as exc:
        _raise_for(exc)

    background_tasks.add_task(prune.maybe_run)
    return LinkCreateResponse(**result)


@router.get("", response_model=LinkListResponse)
async def list_links(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    links = link_service.list_links(db, ctx.visitor_id)
    return LinkListResponse(
        links=[
            LinkResponse(
                code=link.short_code,
                short_url=link_service.short_url_for(link.short_code),
                original_url=link.original_url,
                created_at=link.created_at,
                last_accessed=link.last_accessed,
                usage_count=link.usage_count,
            )
            for link in links
        ],
        total=len(links),
    )


@router.delete("/{code}")
async def delete_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    allocator: CodeAllocator = Depends(get_allocator),
    db: Session = Depends(get_db),
):
    if not link_service.delete_link(db, code, ctx.visitor_id, allocator=allocator):
        raise HTTPException(status_code=404, detail="Link not found")
    return {"message": "Link deleted"}
