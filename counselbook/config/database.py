"""Database configuration and connection setup"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from counselbook.config.settings import get_settings

settings = get_settings()


def build_engine(database_url: str = None, **kwargs):
    """Create an engine; pooling options only apply to server databases"""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False,
            **kwargs,
        )
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        # Bounded wait for a transactional connection
        pool_timeout=settings.TXN_MAX_WAIT_SECONDS,
        pool_pre_ping=True,
        echo=False,
        **kwargs,
    )


engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create all tables that do not exist yet (local development and tests)"""
    from counselbook.models import Base

    Base.metadata.create_all(bind=bind or engine)
