from pydantic import BaseModel


class LinkCreate(BaseModel):
    url: str


class LinkCreateResponse(BaseModel):
    code: str
    short_url: str
    original_url: str
    reused: bool


class LinkResponse(BaseModel):
    code: str
    short_url: str
    original_url: str
    created_at: str
    last_accessed: str | None
    usage_count: int


class LinkListResponse(BaseModel):
    links: list[LinkResponse]
    total: int


class RateLimitStatus(BaseModel):
    allowed: bool
    caller_allowed: bool
    global_allowed: bool
    per_visitor_count: int
    per_address_count: int
    global_count: int
    limit: int
    global_limit: int
    window_minutes: int


class PruneResult(BaseModel):
    affected: int = 0
    failed: int = 0
    skipped: bool = False


class RequestContext(BaseModel):
    visitor_id: str | None
    ip_hash: str | None
