"""
Health probes following the "Health Check Response Format for HTTP APIs"
draft: ``status`` is one of pass / warn / fail and each dependency reports
under ``checks`` keyed as ``component:measurement``.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from typing import Callable, Dict, Any, Optional
from datetime import datetime
from enum import Enum
import os
import time
import psutil
import logging

logger = logging.getLogger(__name__)

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

# A readiness check returns (status, optional output)
ReadinessCheck = Callable[[], "tuple[HealthStatus, Optional[str]]"]

def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"

class ServiceHealth:
    """Liveness and readiness endpoints for one service."""

    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        engine: Optional[Engine] = None,
        checks: Optional[Dict[str, ReadinessCheck]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine = engine
        self.extra_checks = dict(checks or {})
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            """Lightweight liveness signal for load balancers."""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "uptime_seconds": round(time.time() - self.start_time, 3),
                "timestamp": _now(),
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.run_readiness_checks()
            overall = self.overall_status(checks)
            code = status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(
                status_code=code,
                content={
                    "status": overall,
                    "version": self.version,
                    "serviceId": self.service_name,
                    "checks": checks,
                    "timestamp": _now(),
                },
            )

        return router

    def run_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {}
        if self.engine is not None:
            checks["database:connectivity"] = self._check_database()
        checks["system:memory"] = self._check_memory()
        for name, check in self.extra_checks.items():
            checks[name] = self._run_extra_check(name, check)
        return checks

    def _check_database(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": HealthStatus.PASS,
                "componentType": "datastore",
                "observedValue": f"{(time.time() - start_time) * 1000:.2f}",
                "observedUnit": "ms",
                "time": _now(),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": str(e),
                "time": _now(),
            }

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        if available_mb < 100:
            status_val = HealthStatus.FAIL
        elif available_mb < 500:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{available_mb:.2f}",
            "observedUnit": "MB",
            "time": _now(),
        }

    def _run_extra_check(self, name: str, check: ReadinessCheck) -> Dict[str, Any]:
        try:
            status_val, output = check()
        except Exception as e:
            logger.error(f"Readiness check {name} raised: {e}")
            status_val, output = HealthStatus.FAIL, str(e)
        result = {"status": status_val, "componentType": "component", "time": _now()}
        if output:
            result["output"] = output
        return result

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
