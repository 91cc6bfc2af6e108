from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from foundation_api.config import settings

# ---- DB Session Setup (env DATABASE_URL, sqlite file by default) ----
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db():
    """Yields a SQLAlchemy session for dependency-injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
