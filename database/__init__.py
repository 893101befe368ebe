"""
Database module for Face-Fit Backend

Analysis history is stored through SQLAlchemy; any URL SQLAlchemy accepts
works, SQLite by default.

Usage:
    from database import init_database
    init_database()

    from database.repository import get_repository
    analysis_id = get_repository().save_analysis(...)
"""

from core.logging import logger


def init_database() -> bool:
    """
    Initialize the analysis history database

    Returns:
        bool: True if initialization successful, False otherwise
    """
    logger.info("🔄 Initializing database connection...")
    from database.connection import init_database as init_sql
    return init_sql()
