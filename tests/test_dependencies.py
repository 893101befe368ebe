"""Tests for dependency injection and the per-session orchestrator registry"""

import pytest
from unittest.mock import Mock, patch

from core import dependencies
from core.session_store import InMemoryScope, RedisScope
from services.analysis_orchestrator import AnalysisRequestOrchestrator


@pytest.fixture(autouse=True)
def clean_registry():
    dependencies.clear_orchestrators()
    yield
    dependencies.clear_orchestrators()


def _build(session_id, mock_gemini_service, normalizer, mock_repository):
    ledger = dependencies.get_usage_ledger(dependencies.get_session_store(session_id))
    return dependencies.get_orchestrator(
        session_id=session_id,
        ledger=ledger,
        gateway=dependencies.get_payment_gateway(ledger),
        gemini_service=mock_gemini_service,
        normalizer=normalizer,
        repository=mock_repository
    )


class TestServiceProviders:

    def test_init_services(self):
        """Test that init_services initializes all services"""
        dependencies.init_services()

        assert dependencies.get_gemini_service() is dependencies._gemini_service
        assert dependencies.get_product_catalog() is dependencies._product_catalog
        normalizer = dependencies.get_normalizer(dependencies.get_product_catalog())
        assert normalizer.catalog is dependencies._product_catalog

    def test_gemini_service_lazy_init(self):
        with patch.object(dependencies, "_gemini_service", None):
            service = dependencies.get_gemini_service()
            assert service is dependencies.get_gemini_service()

    def test_session_store_without_redis(self):
        with patch("core.cache.redis_client", None):
            store = dependencies.get_session_store("session-0001")

        assert store.session_id == "session-0001"
        assert isinstance(store.durable, InMemoryScope)

    def test_session_store_with_redis(self):
        with patch("core.cache.redis_client", Mock()):
            store = dependencies.get_session_store("session-0001")

        assert isinstance(store.session, RedisScope)
        assert store.session.ttl == 3600

    def test_usage_ledger_uses_configured_limit(self):
        ledger = dependencies.get_usage_ledger(dependencies.get_session_store("session-0001"))
        assert ledger.free_limit == 1


class TestSessionId:

    def _request(self, headers=None, cookies=None):
        request = Mock()
        request.headers = headers or {}
        request.cookies = cookies or {}
        return request

    def test_header_wins(self):
        response = Mock()
        request = self._request({"X-Session-Id": "header-session-01"}, {"facefit_session_id": "cookie-session-01"})

        assert dependencies.get_session_id(request, response) == "header-session-01"
        response.set_cookie.assert_not_called()

    def test_cookie(self):
        request = self._request(cookies={"facefit_session_id": "cookie-session-01"})
        assert dependencies.get_session_id(request, Mock()) == "cookie-session-01"

    @pytest.mark.parametrize("bad", ["short", "has spaces in it", "x" * 65, "semi;colon-0001"])
    def test_malformed_id_is_replaced(self, bad):
        response = Mock()
        session_id = dependencies.get_session_id(self._request({"X-Session-Id": bad}), response)

        assert session_id != bad
        assert len(session_id) == 32
        response.set_cookie.assert_called_once()
        assert response.set_cookie.call_args.args == ("facefit_session_id", session_id)
        assert response.set_cookie.call_args.kwargs["httponly"] is True


class TestOrchestratorRegistry:

    def test_same_session_reuses_orchestrator(self, mock_gemini_service, normalizer, mock_repository):
        first = _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)
        second = _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)

        assert isinstance(first, AnalysisRequestOrchestrator)
        assert first is second
        assert dependencies.active_session_count() == 1

    def test_sessions_get_separate_orchestrators(self, mock_gemini_service, normalizer, mock_repository):
        first = _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)
        second = _build("session-bbbb", mock_gemini_service, normalizer, mock_repository)

        assert first is not second
        assert first.session_id == "session-aaaa"
        assert second.session_id == "session-bbbb"

    def test_least_recently_used_idle_session_is_evicted(
        self, mock_gemini_service, normalizer, mock_repository
    ):
        with patch.object(dependencies.settings, "MAX_ACTIVE_SESSIONS", 2):
            oldest = _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)
            _build("session-bbbb", mock_gemini_service, normalizer, mock_repository)
            _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)
            _build("session-cccc", mock_gemini_service, normalizer, mock_repository)

            assert dependencies.active_session_count() == 2
            assert _build("session-aaaa", mock_gemini_service, normalizer, mock_repository) is oldest

    def test_busy_session_is_not_evicted(self, mock_gemini_service, normalizer, mock_repository):
        with patch.object(dependencies.settings, "MAX_ACTIVE_SESSIONS", 1):
            busy = _build("session-aaaa", mock_gemini_service, normalizer, mock_repository)
            busy._in_flight_generation = 0
            _build("session-bbbb", mock_gemini_service, normalizer, mock_repository)

            assert _build("session-aaaa", mock_gemini_service, normalizer, mock_repository) is busy
