"""Pytest configuration and fixtures for testing"""

import os
import tempfile

# Set environment variables BEFORE importing main
os.environ.setdefault("GEMINI_API_KEY", "test_api_key_123456")
os.environ.setdefault("ADMIN_API_KEY", "test_admin_key")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{tempfile.mkdtemp()}/facefit_test.db")
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

import io
import json

import pytest
from unittest.mock import Mock
from PIL import Image
from fastapi.testclient import TestClient

from main import app
from api.endpoints import analyze as analyze_endpoints
from api.endpoints import payment as payment_endpoints
from core import dependencies
from core.session_store import InMemoryBackend, create_session_store, get_memory_backend
from database.repository import AnalysisRepository
from services.analysis_normalizer import AnalysisResponseNormalizer
from services.analysis_orchestrator import AnalysisRequestOrchestrator
from services.circuit_breaker import gemini_breaker, payment_breaker
from services.gemini_analysis_service import GeminiAnalysisService
from services.payment_gateway import PaymentGatewayClient
from services.product_catalog import StaticProductCatalog
from services.usage_ledger import UsageLedger

TEST_SESSION_ID = "test-session-0001"
PAYMENT_BASE_URL = "https://pay.test"
APP_URL = "https://app.test/"


# ========== Mock Data Generators ==========
def create_v2_response(products=None) -> dict:
    """A complete budget-aware model response"""
    if products is None:
        products = [
            {"brand": "Fenty Beauty", "product": "Pro Filt'r Foundation", "shade": "420",
             "price": "Ksh 4,500", "isAffordable": True, "priority": "essential"},
            {"brand": "Zaron", "product": "Matte Lipstick", "shade": "Berry",
             "price": "Ksh 1,200", "isAffordable": True},
        ]
    return {
        "skinAnalysis": {
            "skinTone": "Deep",
            "undertone": "Warm",
            "facialShape": "Oval",
            "skinType": "Combination",
            "concerns": ["hyperpigmentation", "oiliness"]
        },
        "currentLook": "Natural, minimal makeup",
        "skincareRoutine": {
            "morning": [
                {"step": "Cleanse", "product": "Foaming Cleanser", "brand": "CeraVe",
                 "price": "$15", "howToUse": "Massage onto damp skin", "why": "Removes oil",
                 "time": "7:00 AM", "duration": "1 min"}
            ],
            "evening": [
                {"step": "Moisturize", "product": "Moisturising Cream", "brand": "CeraVe",
                 "price": "Ksh 2,000"}
            ],
            "weekly": [
                {"step": "Exfoliate", "product": "Glycolic Acid Toner", "brand": "The Ordinary",
                 "price": "Ksh 1,800", "frequency": "Twice a week"}
            ]
        },
        "makeupRecommendations": {
            "foundation": "Fenty Pro Filt'r 420",
            "lipColor": "Deep berry",
            "eyeMakeup": "Bronze shimmer",
            "accessories": "Gold hoops"
        },
        "fashionRecommendations": {
            "style": "Ankara",
            "colors": ["mustard", "emerald"],
            "patterns": "Bold geometric",
            "occasion": "Party"
        },
        "productSuggestions": products,
        "tips": ["Always wear sunscreen"],
        "estimatedTotalCost": "Ksh 9,500"
    }


def fenced(data: dict) -> str:
    return f"```json\n{json.dumps(data, indent=2)}\n```"


def create_image_bytes(fmt: str = "JPEG", size=(64, 64)) -> bytes:
    img = Image.new('RGB', size, color='white')
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


# ========== Circuit breakers ==========
@pytest.fixture(autouse=True)
def reset_breakers():
    """Close every circuit breaker around each test"""
    gemini_breaker.close()
    payment_breaker.close()
    yield
    gemini_breaker.close()
    payment_breaker.close()


# ========== Domain fixtures ==========
@pytest.fixture
def memory_backend():
    return InMemoryBackend()


@pytest.fixture
def store(memory_backend):
    return create_session_store(TEST_SESSION_ID, backend=memory_backend, session_ttl=3600)


@pytest.fixture
def ledger(store):
    return UsageLedger(store, free_limit=1)


@pytest.fixture
def gateway(ledger):
    return PaymentGatewayClient(ledger, base_url=PAYMENT_BASE_URL, app_url=APP_URL, timeout=5)


@pytest.fixture
def normalizer():
    return AnalysisResponseNormalizer(
        catalog=StaticProductCatalog(),
        usd_rate=130.0,
        default_budget=10000,
        affordable_threshold=10000
    )


@pytest.fixture
def valid_response_text():
    return fenced(create_v2_response())


@pytest.fixture
def mock_gemini_service(valid_response_text):
    service = Mock(spec=GeminiAnalysisService)
    service.analyze_image.return_value = valid_response_text
    return service


@pytest.fixture
def mock_repository():
    repo = Mock(spec=AnalysisRepository)
    repo.save_analysis.return_value = 1
    repo.get_statistics.return_value = {
        "success": True,
        "total_analysis": 3,
        "by_quality": {"strict": 2, "degraded": 1},
        "by_facial_shape": {"oval": 3},
        "average_processing_time": 1.2
    }
    return repo


@pytest.fixture
def orchestrator(ledger, gateway, mock_gemini_service, normalizer, mock_repository):
    return AnalysisRequestOrchestrator(
        ledger=ledger,
        gateway=gateway,
        gemini_service=mock_gemini_service,
        normalizer=normalizer,
        repository=mock_repository,
        use_cache=False,
        analysis_timeout=2.0
    )


@pytest.fixture
def sample_image_bytes():
    """Create a sample JPEG image for testing"""
    return create_image_bytes()


@pytest.fixture
def sample_image_file(sample_image_bytes):
    """Multipart file tuple for TestClient uploads"""
    return {
        "file": ("selfie.jpg", sample_image_bytes, "image/jpeg")
    }


# ========== Test Client Setup ==========
@pytest.fixture
def api_client(mock_gemini_service, mock_repository):
    """Test client with Gemini and history storage mocked and fresh session state"""
    get_memory_backend().clear()
    dependencies.clear_orchestrators()
    analyze_endpoints.limiter.enabled = False
    payment_endpoints.limiter.enabled = False

    app.dependency_overrides[dependencies.get_gemini_service] = lambda: mock_gemini_service
    app.dependency_overrides[dependencies.get_analysis_repository] = lambda: mock_repository

    with TestClient(app) as test_client:
        test_client.headers.update({"X-Session-Id": TEST_SESSION_ID})
        yield test_client

    app.dependency_overrides.clear()
    dependencies.clear_orchestrators()
    get_memory_backend().clear()
    analyze_endpoints.limiter.enabled = True
    payment_endpoints.limiter.enabled = True


@pytest.fixture
def session_ledger():
    """Ledger over the process-wide store the API uses for TEST_SESSION_ID"""
    return UsageLedger(create_session_store(TEST_SESSION_ID), free_limit=1)


# ========== Factories ==========
@pytest.fixture
def make_response():
    """Build a model response dict; pass products=[...] to override suggestions"""
    return create_v2_response


@pytest.fixture
def fence():
    return fenced


@pytest.fixture
def make_image():
    return create_image_bytes
