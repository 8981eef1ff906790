from sqlalchemy import BigInteger, Column, Integer, String
from app.database import Base


class CodeState(Base):
    __tablename__ = "code_state"

    id = Column(Integer, primary_key=True)
    next_index = Column(BigInteger, nullable=False)


class RecycledCode(Base):
    __tablename__ = "recycled_codes"

    short_code = Column(String(16), primary_key=True)
    code_length = Column(Integer, nullable=False)
    recycled_at = Column(String(32), nullable=False)
