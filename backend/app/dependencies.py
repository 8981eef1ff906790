import uuid

from fastapi import Request, Response

from app.config import settings
from app.schemas.link import RequestContext
from app.services.codegen_service import CodeAllocator, code_allocator
from app.services.prune_service import Pruner, pruner
from app.utils.hashing import hash_address

VISITOR_COOKIE = "visitor_id"
VISITOR_COOKIE_MAX_AGE = 60 * 60 * 24 * 400  # ~400 days


def _valid_visitor_id(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


async def get_request_context(request: Request, response: Response) -> RequestContext:
    visitor_id = _valid_visitor_id(request.cookies.get(VISITOR_COOKIE)) or _valid_visitor_id(
        request.headers.get("X-Visitor-Id")
    )
    if visitor_id is None:
        visitor_id = str(uuid.uuid4())
        response.set_cookie(
            VISITOR_COOKIE,
            visitor_id,
            max_age=VISITOR_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            path="/",
        )
    client_host = request.client.host if request.client else None
    return RequestContext(
        visitor_id=visitor_id,
        ip_hash=hash_address(client_host, settings.ip_hash_secret),
    )


def get_allocator() -> CodeAllocator:
    return code_allocator


def get_pruner() -> Pruner:
    return pruner
