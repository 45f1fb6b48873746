"""Services module for Hair Director Backend"""

from services.gemini_analysis_service import GeminiAnalysisService
from services.hairstyle_synthesis_service import HairstyleSynthesisService
from services.checkout_service import CheckoutService
from services.email_service import EmailService
from services.premium_gate import PremiumEntitlementGate
from services.library_service import LibraryService
from services.orchestrator import AnalysisOrchestrator

__all__ = [
    "GeminiAnalysisService",
    "HairstyleSynthesisService",
    "CheckoutService",
    "EmailService",
    "PremiumEntitlementGate",
    "LibraryService",
    "AnalysisOrchestrator",
]
