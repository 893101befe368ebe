"""SQLAlchemy database models for Face-Fit Backend"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AnalysisHistory(Base):
    """One successful analysis per row"""
    __tablename__ = "analysis_history"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), index=True)
    image_hash = Column(String(64), index=True)
    capture_source = Column(String(20))

    # Skin profile
    skin_tone = Column(String(100))
    undertone = Column(String(20))
    facial_shape = Column(String(20))
    skin_type = Column(String(100))

    budget_kes = Column(Integer, nullable=True)
    parse_quality = Column(String(20))
    product_count = Column(Integer, default=0)

    # Full normalized bundle
    recommendations = Column(JSON)

    processing_time = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
