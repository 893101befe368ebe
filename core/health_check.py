"""
Health Check Service

Checks the services the analysis flow depends on:
- Redis (sessions and analysis cache)
- Analysis history database
- Gemini API availability (deep check only)
- System metrics (CPU, memory)
- Circuit Breaker status
"""

import logging
import time
from typing import Dict, Any, Optional
from datetime import datetime, timezone

import google.generativeai as genai
import psutil
from sqlalchemy import text

from config.settings import settings

logger = logging.getLogger(__name__)


class HealthCheckService:
    """Comprehensive health check service"""

    def __init__(self):
        self.last_check_time: Optional[float] = None

    def check_redis(self) -> Dict[str, Any]:
        """
        Ping Redis

        Returns:
            Dict with status and latency
        """
        from core import cache

        if cache.redis_client is None:
            return {
                "status": "skipped",
                "message": "Redis not configured (in-process session storage)",
                "latency_ms": 0
            }

        try:
            start_time = time.time()
            cache.redis_client.ping()
            latency_ms = round((time.time() - start_time) * 1000, 2)
            return {"status": "healthy", "latency_ms": latency_ms}

        except Exception as e:
            logger.error(f"❌ Redis health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "error": type(e).__name__,
                "message": str(e)[:100],
                "latency_ms": 0
            }

    def check_database(self) -> Dict[str, Any]:
        """
        Run SELECT 1 against the history database

        Returns:
            Dict with status and latency
        """
        from database import connection

        if connection.engine is None:
            return {
                "status": "skipped",
                "message": "Analysis history database not initialized",
                "latency_ms": 0
            }

        try:
            start_time = time.time()
            with connection.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            latency_ms = round((time.time() - start_time) * 1000, 2)
            return {
                "status": "healthy",
                "backend": connection.engine.dialect.name,
                "latency_ms": latency_ms
            }

        except Exception as e:
            logger.error(f"❌ Database health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "error": type(e).__name__,
                "message": str(e)[:100],
                "latency_ms": 0
            }

    async def check_gemini_api(self) -> Dict[str, Any]:
        """
        Check Gemini API availability with lightweight ping

        Returns:
            Dict with status, latency, and model info
        """
        try:
            start_time = time.time()

            model = genai.GenerativeModel(settings.MODEL_NAME)
            response = model.generate_content("ping")

            latency_ms = round((time.time() - start_time) * 1000, 2)

            logger.info(f"✅ Gemini API health check passed ({latency_ms}ms)")

            return {
                "status": "healthy",
                "model": settings.MODEL_NAME,
                "latency_ms": latency_ms,
                "response_length": len(response.text) if response.text else 0
            }

        except Exception as e:
            logger.error(f"❌ Gemini API health check failed: {str(e)}")

            return {
                "status": "unhealthy",
                "error": type(e).__name__,
                "message": str(e)[:100],
                "latency_ms": 0
            }

    def get_system_metrics(self) -> Dict[str, Any]:
        """
        Get system resource usage metrics

        Returns:
            Dict with CPU and memory usage
        """
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

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
                }
            }

        except Exception as e:
            logger.error(f"❌ System metrics error: {str(e)}")

            return {
                "error": str(e),
                "status": "unavailable"
            }

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
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
        self.last_check_time = start_time

        health_result = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {}
        }

        health_result["checks"]["system"] = self.get_system_metrics()

        breaker_result = self.get_circuit_breaker_status()
        health_result["checks"]["circuit_breakers"] = breaker_result

        redis_result = self.check_redis()
        health_result["checks"]["redis"] = redis_result

        database_result = self.check_database()
        health_result["checks"]["database"] = database_result

        for result in (breaker_result, redis_result, database_result):
            if result["status"] in ("unhealthy", "degraded"):
                health_result["status"] = "degraded"

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

        health_result["check_duration_ms"] = round((time.time() - start_time) * 1000, 2)

        return health_result


# Singleton instance
_health_check_service = None


def get_health_check_service() -> HealthCheckService:
    """Get singleton health check service instance"""
    global _health_check_service

    if _health_check_service is None:
        _health_check_service = HealthCheckService()

    return _health_check_service
