"""
Health checks for the scanner service
- Liveness / readiness / startup probes (Kubernetes style)
- Health Check Response Format for HTTP APIs (draft RFC) for readiness
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from typing import Dict, Any
import os
import time
from datetime import datetime
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"


class ServiceHealth:
    """Builds the health router for a service bound to one database engine"""

    def __init__(self, service_name: str, engine: Engine, version: str = "1.0.0"):
        self.service_name = service_name
        self.engine = engine
        self.version = version
        self.start_time = time.time()
        self.checks_performed = 0
        self.last_check_time = None

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            """Lightweight liveness probe used by load balancers"""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        async def readiness() -> JSONResponse:
            """Readiness probe; checks the database and the host"""
            checks = self._perform_readiness_checks()
            overall_status = self._calculate_overall_status(checks)
            status_code = status.HTTP_200_OK if overall_status != HealthStatus.FAIL else status.HTTP_503_SERVICE_UNAVAILABLE

            response = {
                "status": overall_status,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "notes": [],
                "output": "",
                "checks": checks,
                "links": {},
                "serviceId": self.service_name,
                "description": f"{self.service_name} microservice",
                "timestamp": _now()
            }
            return JSONResponse(status_code=status_code, content=response)

        @router.get("/health/startup")
        async def startup() -> Any:
            checks = self._perform_startup_checks()
            status_val = self._calculate_overall_status(checks)

            if status_val == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()

            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "memory_vms_bytes": memory.vms,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }

        return router

    def _perform_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        self.last_check_time = time.time()

        return {
            "database:connectivity": self._check_database(),
            "storage:disk_space": self._check_disk_space(),
            "system:memory": self._check_memory(),
        }

    def _perform_startup_checks(self) -> Dict[str, Dict[str, Any]]:
        return {
            "database:migrations": self._check_migrations(),
            "database:tables": self._check_tables(),
        }

    def _check_database(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            response_time = (time.time() - start_time) * 1000

            return {
                "status": HealthStatus.PASS,
                "componentType": "datastore",
                "observedValue": f"{response_time:.2f}ms",
                "observedUnit": "ms",
                "time": _now()
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": str(e),
                "time": _now()
            }

    def _check_disk_space(self) -> Dict[str, Any]:
        try:
            disk = psutil.disk_usage('/')
            free_gb = disk.free / (1024 ** 3)

            if free_gb < 1:
                status_val = HealthStatus.FAIL
            elif free_gb < 5:
                status_val = HealthStatus.WARN
            else:
                status_val = HealthStatus.PASS

            return {
                "status": status_val,
                "componentType": "system",
                "observedValue": f"{free_gb:.2f}",
                "observedUnit": "GB",
                "time": _now()
            }
        except Exception as e:
            return {
                "status": HealthStatus.WARN,
                "componentType": "system",
                "output": str(e),
                "time": _now()
            }

    def _check_memory(self) -> Dict[str, Any]:
        try:
            memory = psutil.virtual_memory()
            available_mb = memory.available / (1024 ** 2)

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
                "time": _now()
            }
        except Exception as e:
            return {
                "status": HealthStatus.WARN,
                "componentType": "system",
                "output": str(e),
                "time": _now()
            }

    def _check_migrations(self) -> Dict[str, Any]:
        """Alembic stamps alembic_version once migrations have run"""
        try:
            if inspect(self.engine).has_table("alembic_version"):
                return {
                    "status": HealthStatus.PASS,
                    "componentType": "datastore",
                    "time": _now()
                }
            return {
                "status": HealthStatus.WARN,
                "componentType": "datastore",
                "output": "Migrations table not found",
                "time": _now()
            }
        except Exception as e:
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": str(e),
                "time": _now()
            }

    def _check_tables(self) -> Dict[str, Any]:
        required = ["products", "inventory_movements"]
        try:
            inspector = inspect(self.engine)
            missing = [name for name in required if not inspector.has_table(name)]
        except Exception as e:
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": str(e),
                "time": _now()
            }

        if missing:
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": f"Missing tables: {', '.join(missing)}",
                "time": _now()
            }
        return {
            "status": HealthStatus.PASS,
            "componentType": "datastore",
            "time": _now()
        }

    def _calculate_overall_status(self, checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]

        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        elif HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
