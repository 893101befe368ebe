"""Tests for analysis history storage"""

import pytest
from unittest.mock import patch

from database import connection
from database.connection import _mask_url, init_database
from database.repository import SQLAlchemyAnalysisRepository, get_repository


@pytest.fixture
def test_db(tmp_path):
    """Fresh SQLite database for each test"""
    original_engine, original_session = connection.engine, connection.SessionLocal
    assert init_database(f"sqlite:///{tmp_path}/history.db") is True
    yield
    connection.engine.dispose()
    connection.engine, connection.SessionLocal = original_engine, original_session


@pytest.fixture
def bundle(normalizer, valid_response_text):
    return normalizer.normalize(valid_response_text).bundle


class TestConnection:

    def test_mask_url(self):
        assert _mask_url("mysql+pymysql://user:secret@db:3306/facefit") == "mysql+pymysql://***@db:3306/facefit"
        assert _mask_url("sqlite:///./facefit.db") == "sqlite:///./facefit.db"

    def test_invalid_url(self):
        with patch.object(connection, "engine", None), patch.object(connection, "SessionLocal", None):
            assert init_database("notadialect://nowhere") is False
            assert connection.get_db_session() is None

    def test_get_db_requires_init(self):
        with patch.object(connection, "SessionLocal", None):
            with pytest.raises(RuntimeError):
                next(connection.get_db())


class TestAnalysisRepository:

    def test_save_and_read(self, test_db, bundle):
        repo = SQLAlchemyAnalysisRepository()

        analysis_id = repo.save_analysis(
            session_id="test-session-0001",
            image_hash="a" * 64,
            bundle=bundle,
            quality="strict",
            processing_time=1.5,
            capture_source="camera"
        )

        assert analysis_id is not None
        record = repo.get_analysis(analysis_id)
        assert record["facial_shape"] == "oval"
        assert record["undertone"] == "warm"
        assert record["parse_quality"] == "strict"
        assert record["recommendations"]["productSuggestions"][0]["priceKES"] == 4500

    def test_missing_record(self, test_db):
        assert SQLAlchemyAnalysisRepository().get_analysis(999) is None

    def test_statistics(self, test_db, bundle):
        repo = get_repository()
        repo.save_analysis("s1-session", "a" * 64, bundle, "strict", 1.0)
        repo.save_analysis("s2-session", "b" * 64, bundle, "degraded", 2.0)

        stats = repo.get_statistics()

        assert stats["success"] is True
        assert stats["total_analysis"] == 2
        assert stats["by_quality"] == {"strict": 1, "degraded": 1}
        assert stats["by_facial_shape"] == {"oval": 2}
        assert stats["average_processing_time"] == 1.5

    def test_without_database(self, bundle):
        with patch.object(connection, "SessionLocal", None):
            repo = SQLAlchemyAnalysisRepository()
            assert repo.save_analysis("s1-session", "a" * 64, bundle, "strict", 1.0) is None
            assert repo.get_statistics()["success"] is False
