from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings


def build_engine(url: str):
    """
    PostgreSQL gets pre-ping so pooled connections survive restarts.
    SQLite waits on the file lock instead of failing fast, since ledger
    writers queue behind each other.
    """
    if url.startswith("postgresql"):
        return create_engine(url, pool_pre_ping=True)
    return create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout},
    )


engine = build_engine(settings.database_url)

# expire_on_commit stays on: balances are re-read after every ledger unit
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    One session per request. Services commit their own units of work,
    so nothing is committed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the PTO schema. Called once from the application lifespan."""
    import app.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
