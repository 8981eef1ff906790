from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.database import utcnow_iso
from app.errors import ConfigurationError
from app.models.codegen import CodeState, RecycledCode

CURSOR_ID = 1


class AllocationStore:
    """Cursor and recycle-pool operations inside the caller's transaction.

    Every method runs on ``db`` and never commits; the enclosing
    ``db.begin()`` block owns commit and rollback. Locks are taken with
    ``FOR UPDATE`` where the backend has row locks (SQLite instead holds the
    database write lock for the whole allocation transaction).
    """

    def __init__(self, db: Session):
        self.db = db

    @property
    def dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def apply_lock_timeout(self, seconds: int):
        # SQLite uses the connection busy timeout set in get_engine().
        if self.dialect == "postgresql":
            self.db.execute(text(f"SET LOCAL lock_timeout = '{int(seconds)}s'"))
        elif self.dialect in ("mysql", "mariadb"):
            self.db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}"))

    def lock_cursor(self) -> int:
        row = self.db.execute(
            select(CodeState.next_index).where(CodeState.id == CURSOR_ID).with_for_update()
        ).first()
        if row is None:
            raise ConfigurationError("code_state is missing its cursor row; run migrations")
        return int(row[0])

    def advance_cursor(self, to: int):
        result = self.db.execute(
            update(CodeState)
            .where(CodeState.id == CURSOR_ID, CodeState.next_index <= to)
            .values(next_index=to)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConfigurationError(f"Cursor could not advance to {to}")

    def peek_smallest_recycled(self, limit: int) -> list[tuple[str, int]]:
        rows = self.db.execute(
            select(RecycledCode.short_code, RecycledCode.code_length)
            .order_by(RecycledCode.code_length.asc(), RecycledCode.short_code.asc())
            .limit(limit)
            .with_for_update()
        ).all()
        return [(row[0], int(row[1])) for row in rows]

    def remove_from_recycled(self, code: str):
        self.db.execute(
            delete(RecycledCode)
            .where(RecycledCode.short_code == code)
            .execution_options(synchronize_session=False)
        )

    def add_to_recycled(self, code: str, length: int | None = None):
        values = {
            "short_code": code,
            "code_length": len(code) if length is None else length,
            "recycled_at": utcnow_iso(),
        }
        self.db.execute(_insert_ignore(self.dialect).values(**values))

    def recycled_count(self) -> int:
        return self.db.execute(select(func.count()).select_from(RecycledCode)).scalar_one()


def _insert_ignore(dialect: str):
    if dialect == "sqlite":
        return sqlite.insert(RecycledCode).on_conflict_do_nothing(index_elements=["short_code"])
    if dialect == "postgresql":
        return postgresql.insert(RecycledCode).on_conflict_do_nothing(index_elements=["short_code"])
    return insert(RecycledCode).prefix_with("IGNORE")
