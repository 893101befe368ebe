"""Repository interface and SQLAlchemy implementation for analysis history"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

from sqlalchemy import func

from core.logging import logger, log_structured
from database.connection import get_db_session
from database.models import AnalysisHistory
from models.recommendation import RecommendationBundle


class AnalysisRepository(ABC):
    """
    Abstract base class for analysis history storage

    Saving is best effort: implementations return None instead of raising
    so a storage problem never fails an analysis the user already paid for.
    """

    @abstractmethod
    def save_analysis(
        self,
        session_id: str,
        image_hash: str,
        bundle: RecommendationBundle,
        quality: str,
        processing_time: float,
        capture_source: Optional[str] = None
    ) -> Optional[int]:
        """
        Save an analysis result

        Returns:
            Record ID if successful, None otherwise
        """
        pass

    @abstractmethod
    def get_analysis(self, analysis_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_statistics(self) -> Dict[str, Any]:
        """Aggregated counts for the admin dashboard"""
        pass


class SQLAlchemyAnalysisRepository(AnalysisRepository):
    """SQLAlchemy implementation of AnalysisRepository"""

    def save_analysis(
        self,
        session_id: str,
        image_hash: str,
        bundle: RecommendationBundle,
        quality: str,
        processing_time: float,
        capture_source: Optional[str] = None
    ) -> Optional[int]:
        db = get_db_session()
        if not db:
            logger.warning("⚠️ No database connection - skipping history save")
            return None

        try:
            profile = bundle.skin_profile
            history = AnalysisHistory(
                session_id=session_id,
                image_hash=image_hash,
                capture_source=capture_source,
                skin_tone=profile.skin_tone,
                undertone=profile.undertone.value,
                facial_shape=profile.facial_shape.value,
                skin_type=profile.skin_type,
                budget_kes=bundle.budget_kes,
                parse_quality=quality,
                product_count=len(bundle.product_suggestions),
                recommendations=bundle.to_dict(),
                processing_time=processing_time,
            )

            db.add(history)
            db.commit()
            db.refresh(history)

            log_structured("database_saved", {
                "record_id": history.id,
                "parse_quality": quality,
                "product_count": history.product_count
            })
            return history.id

        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to save analysis history: {str(e)}")
            return None

        finally:
            db.close()

    def get_analysis(self, analysis_id: int) -> Optional[Dict[str, Any]]:
        db = get_db_session()
        if not db:
            return None

        try:
            record = db.query(AnalysisHistory).filter(
                AnalysisHistory.id == analysis_id
            ).first()
            if not record:
                return None
            return {
                'id': record.id,
                'image_hash': record.image_hash,
                'skin_tone': record.skin_tone,
                'undertone': record.undertone,
                'facial_shape': record.facial_shape,
                'parse_quality': record.parse_quality,
                'recommendations': record.recommendations,
                'processing_time': record.processing_time,
                'created_at': record.created_at.isoformat() if record.created_at else None
            }

        except Exception as e:
            logger.error(f"❌ Failed to read analysis history: {str(e)}")
            return None

        finally:
            db.close()

    def get_statistics(self) -> Dict[str, Any]:
        db = get_db_session()
        if not db:
            return {
                'success': False,
                'total_analysis': 0,
                'by_quality': {},
                'by_facial_shape': {},
                'average_processing_time': None
            }

        try:
            total = db.query(AnalysisHistory).count()
            by_quality = dict(
                db.query(AnalysisHistory.parse_quality, func.count(AnalysisHistory.id))
                .group_by(AnalysisHistory.parse_quality).all()
            )
            by_shape = dict(
                db.query(AnalysisHistory.facial_shape, func.count(AnalysisHistory.id))
                .group_by(AnalysisHistory.facial_shape).all()
            )
            average = db.query(func.avg(AnalysisHistory.processing_time)).scalar()

            return {
                'success': True,
                'total_analysis': total,
                'by_quality': by_quality,
                'by_facial_shape': by_shape,
                'average_processing_time': round(float(average), 2) if average is not None else None
            }

        except Exception as e:
            logger.error(f"❌ Failed to compute analysis statistics: {str(e)}")
            return {'success': False, 'total_analysis': 0, 'by_quality': {},
                    'by_facial_shape': {}, 'average_processing_time': None}

        finally:
            db.close()


def get_repository() -> AnalysisRepository:
    """
    Factory function for the configured repository implementation

    Returns:
        AnalysisRepository instance
    """
    return SQLAlchemyAnalysisRepository()
