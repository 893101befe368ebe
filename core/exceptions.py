"""Custom exception classes for Face-Fit Backend"""

import re


class FaceFitException(Exception):
    """Base exception for Face-Fit application"""

    status_code: int = 500

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        """snake_case identifier derived from the class name"""
        name = self.__class__.__name__.replace("Exception", "")
        return re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name).lower()


# ========== Upload validation ==========

class UploadValidationException(FaceFitException):
    """Raised when the submitted image is rejected before analysis"""

    status_code = 400

    def __init__(self, message: str = "The uploaded image could not be accepted"):
        super().__init__(message)


class FileTooLargeException(UploadValidationException):
    """Raised when the uploaded image exceeds the size ceiling"""

    status_code = 413

    def __init__(self, size_bytes: int = 0, max_bytes: int = 0, message: str = None):
        if message is None:
            message = (
                f"Image is too large ({size_bytes / (1024 * 1024):.1f}MB). "
                f"Maximum size is {max_bytes // (1024 * 1024)}MB."
            )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(message)


class InvalidFileFormatException(UploadValidationException):
    """Raised when uploaded file format is invalid"""

    def __init__(self, message: str = "Unsupported file format. Please upload a JPG, PNG or WEBP photo."):
        super().__init__(message)


class NoImageSelectedException(UploadValidationException):
    """Raised when analysis is requested before an image was selected"""

    def __init__(self, message: str = "Please select an image first"):
        super().__init__(message)


# ========== Quota / single-flight ==========

class QuotaExhaustedException(FaceFitException):
    """Raised when the free quota is used up and the session has not paid"""

    status_code = 402

    def __init__(self, message: str = "You've used your free analysis! Upgrade to continue."):
        super().__init__(message)


class AnalysisInProgressException(FaceFitException):
    """Raised when an analysis is requested while another one is running"""

    status_code = 409

    def __init__(self, message: str = "An analysis is already in progress. Please wait for it to finish."):
        super().__init__(message)


class StaleAnalysisException(FaceFitException):
    """Raised when an analysis finishes after the flow was reset"""

    status_code = 409

    def __init__(self, message: str = "The analysis was cancelled because the upload was reset."):
        super().__init__(message)


# ========== Storage ==========

class StorageUnavailableException(FaceFitException):
    """Raised when the session store cannot be read or written"""

    status_code = 503

    def __init__(self, message: str = "Session storage is temporarily unavailable"):
        super().__init__(message)


# ========== Payment gateway ==========

class PaymentGatewayException(FaceFitException):
    """Base class for payment plumbing failures"""

    status_code = 502

    def __init__(self, message: str = "Payment service error"):
        super().__init__(message)


class GatewayInitException(PaymentGatewayException):
    """Raised when a hosted checkout session could not be created"""

    def __init__(self, message: str = "Failed to start payment. Please try again."):
        super().__init__(message)


class GatewayVerifyException(PaymentGatewayException):
    """Raised when a payment could not be verified"""

    def __init__(self, message: str = "Payment verification failed."):
        super().__init__(message)


# ========== AI backend transport ==========

class TransportException(FaceFitException):
    """Raised when the AI backend call itself fails"""

    status_code = 502

    def __init__(self, message: str = "Failed to analyze image. Please check your connection and try again."):
        super().__init__(message)


class AnalysisTimeoutException(TransportException):
    """Raised when the AI backend does not answer in time"""

    status_code = 504

    def __init__(self, timeout_seconds: float = 0, message: str = None):
        if message is None:
            message = f"The analysis timed out after {timeout_seconds:.0f}s. Please try again."
        self.timeout_seconds = timeout_seconds
        super().__init__(message)


class GeminiAPIException(TransportException):
    """Raised when Gemini API operations fail"""

    def __init__(self, message: str = "Gemini API error. Please try again."):
        super().__init__(message)


class GeminiRateLimitException(GeminiAPIException):
    """Raised when Gemini API rate limit is exceeded"""

    def __init__(self, message: str = "The AI service is busy (rate limit reached). Please try again shortly."):
        super().__init__(message)


class GeminiAuthenticationException(GeminiAPIException):
    """Raised when Gemini API authentication fails"""

    def __init__(self, message: str = "Gemini API authentication failed"):
        super().__init__(message)


# ========== Model output ==========

class AnalysisOutputException(FaceFitException):
    """Base class for unusable model output"""

    status_code = 422

    def __init__(self, message: str = "We couldn't read the analysis. Please retry with a clearer photo."):
        super().__init__(message)


class IncompleteAnalysisException(AnalysisOutputException):
    """Raised when parsed output lacks required top-level structure"""

    def __init__(self, missing_keys=None, message: str = None):
        self.missing_keys = sorted(missing_keys or [])
        if message is None:
            message = (
                "The analysis was incomplete. Please retry with a clear, well-lit photo of your face."
            )
        super().__init__(message)


class NoStructuredDataException(AnalysisOutputException):
    """Raised when neither JSON nor fallback extraction produced any field"""

    def __init__(self, message: str = "No analysis could be extracted. Please retry with a clearer photo."):
        super().__init__(message)


# ========== Circuit breaker ==========

class CircuitBreakerOpenException(FaceFitException):
    """Raised when circuit breaker is open (service unavailable)"""

    status_code = 503

    def __init__(self, service_name: str = "Service", message: str = None):
        if message is None:
            message = f"{service_name} is temporarily unavailable. Please try again shortly."
        self.service_name = service_name
        super().__init__(message)


# ========== Admin access ==========

class AdminAccessDeniedException(FaceFitException):
    """Raised when an admin endpoint is called without a valid X-API-Key"""

    status_code = 403

    def __init__(self, message: str = "A valid admin key is required."):
        super().__init__(message)


class AdminNotConfiguredException(FaceFitException):
    """Raised when admin endpoints are called but no admin key is configured"""

    status_code = 503

    def __init__(self, message: str = "Admin access is not configured on this server."):
        super().__init__(message)
