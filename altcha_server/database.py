from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from altcha_server.config import settings

# Seconds a SQLite writer waits for a concurrent pop to commit
SQLITE_BUSY_TIMEOUT = 30


def connect_args_for(database_url: str) -> dict:
    """Driver arguments for the session store database."""
    if make_url(database_url).get_backend_name() != "sqlite":
        return {}
    # Requests from one browser session may pop on different threads
    return {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}


engine = create_engine(settings.database_url, connect_args=connect_args_for(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    """Yield a session-store database session for one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
