"""
FastAPI scaffold shared by Access Control Core services.

Provides request context binding, request metrics, ``/health``,
``/metrics`` and the exception handlers that render denials as
``{message, code}`` bodies.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import get_config
from shared.errors import AccessCoreException, AccessDeniedError, StaleWriteError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

SERVICE_VERSION = "1.0.0"

# Dependency states that make the service unable to honour its guarantees
FAILED_DEPENDENCY_STATES = {"error"}


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int):
        self.service_name = service_name
        self.port = port
        self.config = get_config(service_name, port)

        configure_logging(service_name, self.config.log_level, json_logs=self.config.env != "local")
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Access Control Core - {service_name.title()} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url=None,
            lifespan=self._lifespan,
        )
        self._setup_middleware()
        self._setup_routes()
        self._setup_exception_handlers()

    def _setup_middleware(self):
        @self.app.middleware("http")
        async def bind_request_context(request: Request, call_next):
            started = time.perf_counter()
            request_id = set_request_id(request.headers.get("x-request-id"))
            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.perf_counter() - started
            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration,
            )
            self.logger.info(
                "HTTP request",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            response.headers["x-request-id"] = request_id
            return response

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            """Report uptime and dependency states; 503 if a dependency failed."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )

            failed = sorted(name for name, state in dependencies.items() if state in FAILED_DEPENDENCY_STATES)
            status = "degraded" if failed else "ok"
            self.metrics.record_health_check(status)
            body = {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "dependencies": dependencies,
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }
            return JSONResponse(status_code=503 if failed else 200, content=body)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    def _setup_exception_handlers(self):
        @self.app.exception_handler(AccessDeniedError)
        async def access_denied_handler(request: Request, exc: AccessDeniedError):
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().to_body())

        @self.app.exception_handler(StaleWriteError)
        async def stale_write_handler(request: Request, exc: StaleWriteError):
            self.logger.info("Stale write", **exc.details)
            return JSONResponse(status_code=409, content=exc.to_response().to_body())

        @self.app.exception_handler(AccessCoreException)
        async def access_core_exception_handler(request: Request, exc: AccessCoreException):
            self.logger.warning("Request rejected", code=exc.code, message=exc.message, details=exc.details)
            return JSONResponse(status_code=400, content=exc.to_response().to_body())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error"},
            )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.startup()
        self.logger.info("Service started", port=self.port)
        try:
            yield
        finally:
            await self.shutdown()
            self.logger.info("Service stopped")

    async def startup(self):
        """Open connections to dependencies. Override in subclasses."""

    async def shutdown(self):
        """Release dependencies. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
