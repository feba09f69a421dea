from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings


_is_sqlite = settings.database_url.startswith("sqlite")

# SQLite ignores pool sizing; Postgres gets a small recycled pool
engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    **({} if _is_sqlite else {"pool_size": 5, "max_overflow": 10, "pool_recycle": 3600}),
)

# Services keep using rows after commit to render responses and push payloads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)

Base = declarative_base()


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for code outside a request: websocket handshakes and scripts."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
