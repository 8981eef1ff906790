import logging
from datetime import datetime, timezone

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings

logger = logging.getLogger("app.database")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Base(DeclarativeBase):
    pass


def utcnow_iso(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    # pysqlite's implicit BEGIN is disabled; _sqlite_begin emits it instead.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_begin(conn):
    # SQLite has no row locks; the allocation engine takes the write lock up
    # front so two allocators queue on the busy timeout instead of deadlocking
    # on a read-to-write upgrade.
    mode = conn.get_execution_options().get("sqlite_begin")
    conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


def get_engine(url: str | None = None) -> Engine:
    db_url = url or settings.db_url
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": settings.lock_timeout_seconds},
        )
        event.listen(engine, "connect", _set_sqlite_pragmas)
        event.listen(engine, "begin", _sqlite_begin)
        return engine
    return create_engine(db_url, pool_pre_ping=True)


def locking_engine(engine: Engine) -> Engine:
    """Variant of ``engine`` for allocation transactions."""
    return engine.execution_options(sqlite_begin="IMMEDIATE")


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
AllocationSessionLocal = sessionmaker(bind=locking_engine(engine), autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_V1 = [
    """
    CREATE TABLE IF NOT EXISTS code_state (
        id         INTEGER PRIMARY KEY CHECK (id = 1),
        next_index BIGINT NOT NULL CHECK (next_index >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recycled_codes (
        short_code  VARCHAR(16) PRIMARY KEY,
        code_length INTEGER NOT NULL,
        recycled_at VARCHAR(32) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_recycled_order ON recycled_codes(code_length, short_code)",
    """
    CREATE TABLE IF NOT EXISTS short_links (
        short_code    VARCHAR(16) PRIMARY KEY,
        original_url  TEXT NOT NULL,
        created_at    VARCHAR(32) NOT NULL,
        visitor_id    VARCHAR(36),
        ip_hash       VARCHAR(64),
        usage_count   BIGINT NOT NULL DEFAULT 0,
        last_accessed VARCHAR(32)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_links_created ON short_links(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_links_visitor_created ON short_links(visitor_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_links_ip_created ON short_links(ip_hash, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_links_last_accessed ON short_links(last_accessed)",
    "INSERT INTO code_state (id, next_index) VALUES (1, 0)",
]


# Applied in order, each exactly once; append new versions, never edit old ones.
MIGRATIONS = [
    (1, SCHEMA_V1),
]


def _applied_versions(conn) -> set[int]:
    conn.execute(text(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        " version INTEGER PRIMARY KEY,"
        " applied_at VARCHAR(32) NOT NULL)"
    ))
    return {row[0] for row in conn.execute(text("SELECT version FROM schema_migrations"))}


def init_db(db_engine: Engine | None = None) -> list[int]:
    """Bring the schema up to date. Returns the versions applied by this call."""
    target = db_engine or engine
    with target.begin() as conn:
        applied = _applied_versions(conn)

    newly_applied = []
    for version, statements in MIGRATIONS:
        if version in applied:
            continue
        with target.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))
            conn.execute(
                text("INSERT INTO schema_migrations (version, applied_at) VALUES (:v, :at)"),
                {"v": version, "at": utcnow_iso()},
            )
        logger.info("Applied schema migration %s", version)
        newly_applied.append(version)
    return newly_applied
