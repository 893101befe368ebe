"""Tests for upload, analysis and usage endpoints"""

import pytest
from unittest.mock import Mock, patch

from api.endpoints.analyze import parse_budget, parse_source
from core import dependencies
from core.exceptions import GeminiRateLimitException, UploadValidationException
from models.upload import CaptureSource


def _checkout_response():
    response = Mock()
    response.status_code = 200
    response.ok = True
    response.json.return_value = {
        "status": True,
        "data": {"authorization_url": "https://checkout.test/abc", "reference": "ref_123"}
    }
    return response


class TestFormParsing:

    @pytest.mark.parametrize("raw,expected", [
        (None, None),
        ("", None),
        ("0", None),
        ("5000", 5000),
        ("Ksh 2,500", 2500),
        ("KES 1200", 1200),
        ("7500.0", 7500),
    ])
    def test_parse_budget(self, raw, expected):
        assert parse_budget(raw) == expected

    @pytest.mark.parametrize("raw", ["cheap", "-100"])
    def test_parse_budget_invalid(self, raw):
        with pytest.raises(UploadValidationException):
            parse_budget(raw)

    def test_parse_source(self):
        assert parse_source(None) == CaptureSource.FILE_PICKER
        assert parse_source("CAMERA") == CaptureSource.CAMERA
        with pytest.raises(UploadValidationException):
            parse_source("scanner")


class TestUploadEndpoint:
    """Test /api/upload endpoint"""

    def test_upload_success(self, api_client, sample_image_file, sample_image_bytes):
        response = api_client.post("/api/upload", files=sample_image_file, data={"budget": "Ksh 3,000"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["state"] == "image_selected"
        assert data["size_bytes"] == len(sample_image_bytes)
        assert data["source"] == "file_picker"
        assert data["budget"] == 3000

    def test_upload_camera_capture(self, api_client, make_image):
        response = api_client.post(
            "/api/upload",
            files={"file": ("capture.png", make_image("PNG"), "image/png")},
            data={"source": "camera"}
        )
        assert response.status_code == 200
        assert response.json()["source"] == "camera"

    def test_upload_unsupported_type(self, api_client):
        response = api_client.post(
            "/api/upload",
            files={"file": ("notes.txt", b"hello", "text/plain")}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_file_format"

    def test_upload_too_large(self, api_client):
        too_big = b"x" * (5 * 1024 * 1024 + 1)
        response = api_client.post(
            "/api/upload",
            files={"file": ("big.jpg", too_big, "image/jpeg")}
        )

        assert response.status_code == 413
        assert response.json()["error"] == "file_too_large"

    def test_request_body_over_limit_rejected_early(self, api_client):
        huge = b"x" * (7 * 1024 * 1024)
        response = api_client.post(
            "/api/upload",
            files={"file": ("huge.jpg", huge, "image/jpeg")}
        )

        assert response.status_code == 413
        assert response.json()["error"] == "file_too_large"

    def test_upload_missing_file(self, api_client):
        response = api_client.post("/api/upload")
        assert response.status_code == 422

    def test_invalid_budget(self, api_client, sample_image_file):
        response = api_client.post("/api/upload", files=sample_image_file, data={"budget": "lots"})
        assert response.status_code == 400
        assert response.json()["error"] == "upload_validation"


class TestAnalyzeEndpoint:
    """Test /api/analyze endpoint"""

    def test_analyze_selected_image(self, api_client, sample_image_file, mock_gemini_service):
        api_client.post("/api/upload", files=sample_image_file)

        response = api_client.post("/api/analyze")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["quality"] == "strict"
        assert data["missing_fields"] == []
        assert data["usage_count"] == 1
        assert data["analysis_id"] == 1
        assert data["data"]["skinAnalysis"]["facialShape"] == "oval"
        assert data["data"]["productSuggestions"][0]["priceKES"] == 4500
        mock_gemini_service.analyze_image.assert_called_once()

    def test_analyze_with_file_in_one_step(self, api_client, sample_image_file):
        response = api_client.post("/api/analyze", files=sample_image_file, data={"budget": "2000"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["budget"] == 2000
        assert [p["product"] for p in data["productSuggestions"]] == ["Matte Lipstick"]

    def test_degraded_analysis(self, api_client, sample_image_file, mock_gemini_service):
        mock_gemini_service.analyze_image.return_value = "Skin tone: rich brown. Face shape: heart."

        response = api_client.post("/api/analyze", files=sample_image_file)

        assert response.status_code == 200
        data = response.json()
        assert data["quality"] == "degraded"
        assert "skinAnalysis.undertone" in data["missing_fields"]
        assert data["data"]["skinAnalysis"]["undertone"] == "Not specified"

    def test_free_quota_is_one_analysis(self, api_client, sample_image_file, mock_gemini_service):
        assert api_client.post("/api/analyze", files=sample_image_file).status_code == 200

        response = api_client.post("/api/analyze", files=sample_image_file)

        assert response.status_code == 402
        assert response.json()["error"] == "quota_exhausted"
        assert mock_gemini_service.analyze_image.call_count == 1
        assert api_client.get("/api/status").json()["state"] == "paywall_blocked"

    def test_paid_session_analyzes_again(self, api_client, sample_image_file, session_ledger):
        assert api_client.post("/api/analyze", files=sample_image_file).status_code == 200
        session_ledger.mark_paid("ref_123")

        response = api_client.post("/api/analyze", files=sample_image_file)

        assert response.status_code == 200
        assert response.json()["usage_count"] == 2

    def test_gemini_failure_does_not_consume(
        self, api_client, sample_image_file, mock_gemini_service, session_ledger
    ):
        mock_gemini_service.analyze_image.side_effect = GeminiRateLimitException()

        response = api_client.post("/api/analyze", files=sample_image_file)

        assert response.status_code == 502
        assert response.json()["error"] == "gemini_rate_limit"
        assert session_ledger.snapshot().free_uploads_consumed == 0

    def test_unreadable_output(self, api_client, sample_image_file, mock_gemini_service):
        mock_gemini_service.analyze_image.return_value = '{"skinAnalysis": {"skinTone": "Deep"}}'

        response = api_client.post("/api/analyze", files=sample_image_file)

        assert response.status_code == 422
        assert response.json()["error"] == "incomplete_analysis"

    def test_new_file_rejected_while_analysis_runs(
        self, api_client, sample_image_file, make_image, mock_gemini_service
    ):
        api_client.post("/api/upload", files=sample_image_file)
        orchestrator = dependencies._orchestrators["test-session-0001"]
        orchestrator._in_flight_generation = orchestrator.generation

        response = api_client.post(
            "/api/analyze",
            files={"file": ("retake.png", make_image("PNG"), "image/png")}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "analysis_in_progress"
        assert orchestrator.attempt.mime_type == "image/jpeg"
        mock_gemini_service.analyze_image.assert_not_called()

    def test_sessions_are_isolated(self, api_client, sample_image_file):
        assert api_client.post("/api/analyze", files=sample_image_file).status_code == 200

        response = api_client.post(
            "/api/analyze",
            files=sample_image_file,
            headers={"X-Session-Id": "another-session-01"}
        )
        assert response.status_code == 200


class TestFlowEndpoints:

    def test_reset(self, api_client, sample_image_file):
        api_client.post("/api/analyze", files=sample_image_file)

        response = api_client.post("/api/reset")

        assert response.status_code == 200
        assert response.json()["state"] == "empty"
        assert response.json()["has_result"] is False

        status = api_client.get("/api/status").json()
        assert status["has_image"] is False

    def test_status_after_upload(self, api_client, sample_image_file):
        api_client.post("/api/upload", files=sample_image_file)

        data = api_client.get("/api/status").json()
        assert data["state"] == "image_selected"
        assert data["analyzing"] is False

    def test_new_session_gets_cookie(self, api_client):
        api_client.headers.pop("X-Session-Id")

        response = api_client.get("/api/status")

        assert response.status_code == 200
        assert "facefit_session_id" in response.cookies

    def test_malformed_session_header_is_replaced(self, api_client):
        response = api_client.get("/api/status", headers={"X-Session-Id": "bad id!"})
        assert "facefit_session_id" in response.cookies


class TestRequestMore:

    def test_with_quota_opens_chooser(self, api_client):
        response = api_client.post("/api/request-more", json={"email": "user@example.com"})

        assert response.status_code == 200
        assert response.json()["action"] == "choose_image"
        assert response.json()["redirect_url"] is None

    def test_exhausted_redirects_to_checkout(self, api_client, sample_image_file):
        api_client.post("/api/analyze", files=sample_image_file)

        with patch("services.payment_gateway.requests.post", return_value=_checkout_response()):
            response = api_client.post("/api/request-more", json={"email": "user@example.com"})

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "redirect"
        assert data["redirect_url"] == "https://checkout.test/abc"
        assert data["reference"] == "ref_123"

    def test_checkout_failure_is_reported(self, api_client, sample_image_file):
        api_client.post("/api/analyze", files=sample_image_file)
        failed = Mock(status_code=400, ok=False)
        failed.json.return_value = {"status": False}

        with patch("services.payment_gateway.requests.post", return_value=failed):
            response = api_client.post("/api/request-more", json={"email": "user@example.com"})

        assert response.status_code == 502
        assert response.json()["error"] == "gateway_init"

    def test_invalid_email(self, api_client):
        response = api_client.post("/api/request-more", json={"email": "nope"})
        assert response.status_code == 422


class TestUsageEndpoint:

    def test_fresh_session(self, api_client):
        response = api_client.get("/api/usage")

        assert response.status_code == 200
        data = response.json()
        assert data["free_uploads_consumed"] == 0
        assert data["free_upload_limit"] == 1
        assert data["can_consume_free_upload"] is True
        assert data["is_paid"] is False
        assert data["just_paid"] is False
        assert data["premium_price_kes"] == 500

    def test_after_analysis(self, api_client, sample_image_file):
        api_client.post("/api/analyze", files=sample_image_file)

        data = api_client.get("/api/usage").json()
        assert data["free_uploads_consumed"] == 1
        assert data["can_consume_free_upload"] is False

    def test_just_paid_is_one_shot(self, api_client, session_ledger):
        session_ledger.mark_paid("ref_123")
        session_ledger.set_just_paid()

        first = api_client.get("/api/usage").json()
        second = api_client.get("/api/usage").json()

        assert first["just_paid"] is True
        assert first["is_paid"] is True
        assert second["just_paid"] is False
        assert second["is_paid"] is True
