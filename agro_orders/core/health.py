"""
Health and metrics endpoints for the orders service.

Follows the "Health Check Response Format for HTTP APIs" draft and the
Kubernetes liveness / readiness / startup probe split. Readiness fails only
when the database is unreachable or the host is out of resources; collaborator
services that are down degrade the service to ``warn`` because stored orders
can still be read and moved along without them.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from typing import Callable, Dict, Any, Mapping, Optional
from datetime import datetime, timezone
from enum import Enum
import os
import time
import httpx
import psutil
import logging

logger = logging.getLogger(__name__)

# (warn below, fail below)
DISK_FREE_GB = (5, 1)
MEMORY_AVAILABLE_MB = (500, 100)
UPSTREAM_PROBE_TIMEOUT = 2.0

def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

def _component(status_val: HealthStatus, component_type: str, **fields: Any) -> Dict[str, Any]:
    return {"status": status_val, "componentType": component_type, **fields, "time": _now()}

def _threshold(value: float, limits: tuple) -> HealthStatus:
    warn_below, fail_below = limits
    if value < fail_below:
        return HealthStatus.FAIL
    if value < warn_below:
        return HealthStatus.WARN
    return HealthStatus.PASS

class ServiceHealth:
    """
    Builds the health router for the service.

    ``engine_factory`` returns the SQLAlchemy engine to probe and is called on
    every check. ``upstreams`` maps a collaborator name to its base URL; each
    is probed at ``<url>/health``. ``metrics_provider`` returns business
    counters merged into ``/metrics``.
    """

    def __init__(
        self,
        service_name: str,
        engine_factory: Callable[[], Engine],
        version: str = "1.0.0",
        upstreams: Optional[Mapping[str, str]] = None,
        metrics_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.service_name = service_name
        self.engine_factory = engine_factory
        self.version = version
        self.upstreams = dict(upstreams or {})
        self.metrics_provider = metrics_provider
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            """Liveness for load balancers; touches no dependency."""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive", "uptime_seconds": round(time.time() - self.start_time, 3)}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.perform_readiness_checks()
            overall = self.calculate_overall_status(checks)
            code = status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(status_code=code, content={
                "status": overall,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "serviceId": self.service_name,
                "checks": checks,
                "timestamp": _now()
            })

        @router.get("/health/startup")
        def startup() -> JSONResponse:
            checks = self.perform_startup_checks()
            if self.calculate_overall_status(checks) != HealthStatus.PASS:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return JSONResponse(content={"status": "started", "checks": checks})

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            body: Dict[str, Any] = {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }
            if self.metrics_provider is not None:
                try:
                    body["business"] = self.metrics_provider()
                except SQLAlchemyError as e:
                    logger.warning(f"Business metrics unavailable: {e}")
                    body["business"] = None
            return body

        return router

    def perform_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {
            "database:connectivity": self._check_database(),
            "storage:disk_space": self._check_disk_space(),
            "system:memory": self._check_memory(),
        }
        for name, url in self.upstreams.items():
            checks[f"{name}:reachability"] = self._check_upstream(url)
        return checks

    def perform_startup_checks(self) -> Dict[str, Dict[str, Any]]:
        return {"database:migrations": self._check_migrations()}

    def _check_database(self) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            with self.engine_factory().connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return _component(HealthStatus.FAIL, "datastore", output=str(e))
        elapsed_ms = (time.perf_counter() - start) * 1000
        return _component(HealthStatus.PASS, "datastore", observedValue=f"{elapsed_ms:.2f}", observedUnit="ms")

    def _check_disk_space(self) -> Dict[str, Any]:
        free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        return _component(_threshold(free_gb, DISK_FREE_GB), "system", observedValue=f"{free_gb:.2f}", observedUnit="GB")

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        return _component(
            _threshold(available_mb, MEMORY_AVAILABLE_MB), "system",
            observedValue=f"{available_mb:.2f}", observedUnit="MB"
        )

    def _check_upstream(self, base_url: str) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            response = httpx.get(f"{base_url.rstrip('/')}/health", timeout=UPSTREAM_PROBE_TIMEOUT)
        except httpx.HTTPError as e:
            return _component(HealthStatus.WARN, "component", output=repr(e))
        elapsed_ms = (time.perf_counter() - start) * 1000
        if response.status_code != 200:
            return _component(HealthStatus.WARN, "component", output=f"HTTP {response.status_code}")
        return _component(HealthStatus.PASS, "component", observedValue=f"{elapsed_ms:.2f}", observedUnit="ms")

    def _check_migrations(self) -> Dict[str, Any]:
        """The alembic_version table exists once `alembic upgrade` has run."""
        try:
            migrated = inspect(self.engine_factory()).has_table("alembic_version")
        except SQLAlchemyError as e:
            return _component(HealthStatus.FAIL, "datastore", output=str(e))
        if migrated:
            return _component(HealthStatus.PASS, "datastore")
        return _component(HealthStatus.WARN, "datastore", output="Migrations table not found")

    def calculate_overall_status(self, checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = {check.get("status", HealthStatus.PASS) for check in checks.values()}
        for candidate in (HealthStatus.FAIL, HealthStatus.WARN):
            if candidate in statuses:
                return candidate
        return HealthStatus.PASS
