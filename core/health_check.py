"""
Enhanced Health Check Service

Provides comprehensive health checks for all critical services:
- Client storage backend connectivity (Redis or in-memory)
- Gemini API availability
- Payment / email provider configuration
- System metrics (CPU, memory)
- Circuit Breaker status
"""

import logging
import time
from typing import Dict, Any, Optional
from datetime import datetime
import psutil

logger = logging.getLogger(__name__)


class HealthCheckService:
    """Comprehensive health check service"""

    def __init__(self):
        """Initialize health check service"""
        self.last_check_time: Optional[float] = None

    async def check_storage(self) -> Dict[str, Any]:
        """
        Check the client storage backend

        Returns:
            Dict with status, backend name and latency
        """
        from core.dependencies import get_storage_backend

        try:
            start_time = time.time()
            backend = get_storage_backend()
            reachable = backend.ping()
            latency_ms = round((time.time() - start_time) * 1000, 2)

            if not reachable:
                logger.error(f"❌ Storage health check failed: {backend.name}")
                return {
                    "status": "unhealthy",
                    "backend": backend.name,
                    "latency_ms": latency_ms
                }

            return {
                "status": "healthy",
                "backend": backend.name,
                "latency_ms": latency_ms
            }

        except Exception as e:
            logger.error(f"❌ Storage health check error: {str(e)}")

            return {
                "status": "unhealthy",
                "error": type(e).__name__,
                "message": str(e),
                "latency_ms": 0
            }

    async def check_gemini_api(self) -> Dict[str, Any]:
        """
        Check Gemini API availability with lightweight ping

        Returns:
            Dict with status, latency, and model info
        """
        from config.settings import settings

        try:
            import google.generativeai as genai

            start_time = time.time()

            genai.configure(api_key=settings.GEMINI_API_KEY)

            # Minimal text request, no image
            model = genai.GenerativeModel(settings.ANALYSIS_MODEL)
            response = model.generate_content("ping")

            latency_ms = round((time.time() - start_time) * 1000, 2)

            logger.info(f"✅ Gemini API health check passed ({latency_ms}ms)")

            return {
                "status": "healthy",
                "model": settings.ANALYSIS_MODEL,
                "image_model": settings.IMAGE_MODEL,
                "latency_ms": latency_ms,
                "response_length": len(response.text) if response.text else 0
            }

        except Exception as e:
            logger.error(f"❌ Gemini API health check failed: {str(e)}")

            return {
                "status": "unhealthy",
                "error": type(e).__name__,
                "message": str(e)[:100],  # Truncate long error messages
                "latency_ms": 0
            }

    def check_providers(self) -> Dict[str, Any]:
        """Configuration-only check of the payment and email providers (no network)"""
        from config.settings import settings

        return {
            "gemini": "configured" if settings.GEMINI_API_KEY else "missing",
            "polar": "configured" if settings.POLAR_ACCESS_TOKEN and settings.POLAR_PRODUCT_ID else "missing",
            "polar_webhook": "configured" if settings.POLAR_WEBHOOK_SECRET else "missing",
            "resend": "configured" if settings.RESEND_API_KEY else "missing"
        }

    def get_system_metrics(self) -> Dict[str, Any]:
        """
        Get system resource usage metrics

        Returns:
            Dict with CPU, memory, and disk usage
        """
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

            try:
                disk = psutil.disk_usage('/')
                disk_info = {
                    "total_gb": round(disk.total / (1024 ** 3), 2),
                    "used_gb": round(disk.used / (1024 ** 3), 2),
                    "free_gb": round(disk.free / (1024 ** 3), 2),
                    "percent": disk.percent
                }
            except OSError as e:
                logger.warning(f"⚠️ Disk usage unavailable: {str(e)}")
                disk_info = {"status": "unavailable", "reason": str(e)}

            return {
                "cpu": {
                    "percent": cpu_percent,
                    "count": psutil.cpu_count()
                },
                "memory": {
                    "total_mb": round(memory.total / (1024 ** 2), 2),
                    "available_mb": round(memory.available / (1024 ** 2), 2),
                    "used_mb": round(memory.used / (1024 ** 2), 2),
                    "percent": memory.percent
                },
                "disk": disk_info
            }

        except Exception as e:
            logger.error(f"❌ System metrics error: {str(e)}")

            return {
                "error": str(e),
                "status": "unavailable"
            }

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
        """
        Get Circuit Breaker status

        Returns:
            Dict with per-breaker state and failure count
        """
        from services.circuit_breaker import get_circuit_breaker_status

        breakers = get_circuit_breaker_status()
        any_open = any(b["is_open"] for b in breakers.values())

        return {
            "status": "degraded" if any_open else "healthy",
            "breakers": breakers
        }

    async def comprehensive_health_check(
        self,
        include_expensive_checks: bool = False
    ) -> Dict[str, Any]:
        """
        Run comprehensive health check

        Args:
            include_expensive_checks: If True, runs Gemini API check (adds ~1-2s)

        Returns:
            Dict with all health check results
        """
        start_time = time.time()

        health_result = {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "checks": {}
        }

        # 1. System metrics (fast, always run)
        health_result["checks"]["system"] = self.get_system_metrics()

        # 2. Circuit Breaker status (fast, always run)
        breaker_result = self.get_circuit_breaker_status()
        health_result["checks"]["circuit_breaker"] = breaker_result
        if breaker_result["status"] == "degraded":
            health_result["status"] = "degraded"

        # 3. Provider configuration (fast, always run)
        health_result["checks"]["providers"] = self.check_providers()

        # 4. Storage (always run)
        storage_result = await self.check_storage()
        health_result["checks"]["storage"] = storage_result
        if storage_result["status"] == "unhealthy":
            health_result["status"] = "degraded"

        # 5. Gemini API check (expensive, optional)
        if include_expensive_checks:
            gemini_result = await self.check_gemini_api()
            health_result["checks"]["gemini_api"] = gemini_result

            if gemini_result["status"] == "unhealthy":
                health_result["status"] = "degraded"
        else:
            health_result["checks"]["gemini_api"] = {
                "status": "skipped",
                "message": "Use ?deep=true for full check"
            }

        self.last_check_time = time.time()
        health_result["check_duration_ms"] = round((self.last_check_time - start_time) * 1000, 2)

        return health_result


# Singleton instance
_health_check_service = None


def get_health_check_service() -> HealthCheckService:
    """Get singleton health check service instance"""
    global _health_check_service

    if _health_check_service is None:
        _health_check_service = HealthCheckService()

    return _health_check_service
