from sqlalchemy import BigInteger, Column, String, Text
from app.database import Base


class ShortLink(Base):
    __tablename__ = "short_links"

    short_code = Column(String(16), primary_key=True)
    original_url = Column(Text, nullable=False)
    created_at = Column(String(32), nullable=False)
    visitor_id = Column(String(36))
    ip_hash = Column(String(64))
    usage_count = Column(BigInteger, nullable=False, default=0)
    last_accessed = Column(String(32))
