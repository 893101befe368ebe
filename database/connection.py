"""Database connection and session management"""

from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config.settings import settings
from database.models import Base
from core.logging import logger, log_structured


engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def _mask_url(url: str) -> str:
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


def init_database(database_url: Optional[str] = None) -> bool:
    """
    Initialize database connection and create tables

    Args:
        database_url: Override for settings.DATABASE_URL

    Returns:
        bool: True if successful, False otherwise
    """
    global engine, SessionLocal

    url = database_url or settings.DATABASE_URL
    if not url:
        logger.warning("⚠️ DATABASE_URL is not set - analysis history is disabled")
        return False

    try:
        logger.info(f"Connecting to DB: {_mask_url(url)}")

        connect_args = {}
        if url.startswith("sqlite"):
            # Request handlers and worker threads share the connection pool
            connect_args["check_same_thread"] = False

        engine = create_engine(
            url,
            pool_pre_ping=True,
            connect_args=connect_args,
            echo=False
        )

        SessionLocal = sessionmaker(bind=engine)

        Base.metadata.create_all(bind=engine)

        logger.info("✅ Database connection established")
        log_structured("database_connected", {
            "backend": engine.dialect.name,
            "tables": ["analysis_history"]
        })

        return True

    except Exception as e:
        logger.error(f"❌ Database connection failed: {str(e)}")
        engine = None
        SessionLocal = None
        return False


def get_db() -> Session:
    """
    Get database session (FastAPI dependency)

    Yields:
        Session: SQLAlchemy database session
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db_session() -> Optional[Session]:
    """
    Get database session for direct use (not as dependency)

    Returns:
        Optional[Session]: SQLAlchemy database session or None if not initialized
    """
    if SessionLocal is None:
        return None
    return SessionLocal()
