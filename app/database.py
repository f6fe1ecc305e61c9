import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 1.0


def _engine_options(url: str) -> dict:
    """SQLite needs cross-thread access for FastAPI's threadpool; servers get pre-ping"""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 300}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


@event.listens_for(engine, "before_cursor_execute")
def _start_timer(conn, _cursor, _statement, _parameters, _context, _executemany):
    conn.info.setdefault("query_start_time", []).append(time.time())


@event.listens_for(engine, "after_cursor_execute")
def _log_slow_query(conn, _cursor, statement, _parameters, _context, _executemany):
    elapsed = time.time() - conn.info["query_start_time"].pop(-1)
    if elapsed > SLOW_QUERY_SECONDS:
        logger.warning(f"🐌 Slow query ({elapsed:.2f}s): {statement[:200]}...")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
