"""Services module for Face-Fit Backend"""

from services.analysis_normalizer import AnalysisResponseNormalizer
from services.analysis_orchestrator import AnalysisRequestOrchestrator
from services.gemini_analysis_service import GeminiAnalysisService
from services.payment_gateway import PaymentGatewayClient
from services.product_catalog import StaticProductCatalog
from services.usage_ledger import UsageLedger

__all__ = [
    "AnalysisResponseNormalizer",
    "AnalysisRequestOrchestrator",
    "GeminiAnalysisService",
    "PaymentGatewayClient",
    "StaticProductCatalog",
    "UsageLedger",
]
