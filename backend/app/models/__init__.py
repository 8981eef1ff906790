from app.models.codegen import CodeState, RecycledCode
from app.models.short_link import ShortLink

__all__ = ["CodeState", "RecycledCode", "ShortLink"]
