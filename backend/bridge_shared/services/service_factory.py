"""
Service Factory Module

Common FastAPI service creation utilities shared by the ingestion gateway and
the feedback notifier.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from bridge_shared.observability.metrics import get_metrics, render_latest

logger = logging.getLogger(__name__)

HealthCheck = Callable[[FastAPI], Awaitable[bool]]


class ServiceInfo:
    """Service configuration container"""

    def __init__(
        self,
        name: str,
        title: str,
        description: str,
        version: str = "0.1.0",
        port: int = 8000,
        host: str = "0.0.0.0",
        tags: Optional[List[Dict[str, str]]] = None
    ):
        self.name = name
        self.title = title
        self.description = description
        self.version = version
        self.port = port
        self.host = host
        self.tags = tags or []


def create_fastapi_service(
    service_info: ServiceInfo,
    custom_lifespan: Optional[Callable] = None,
    health_checks: Optional[Dict[str, HealthCheck]] = None,
    include_logging_middleware: bool = True,
) -> FastAPI:
    """
    Create a standardized FastAPI application.

    Args:
        service_info: Service configuration
        custom_lifespan: Optional lifespan context manager
        health_checks: Named dependency checks reported by /health
        include_logging_middleware: Log (and count) every request
    """
    if custom_lifespan:
        lifespan_func = custom_lifespan
    else:
        @asynccontextmanager
        async def default_lifespan(app: FastAPI):
            logger.info(f"{service_info.name} starting")
            yield
            logger.info(f"{service_info.name} stopped")
        lifespan_func = default_lifespan

    openapi_tags = [{"name": "Health", "description": "Health check and service status"}]
    openapi_tags.extend(service_info.tags)

    app = FastAPI(
        title=service_info.title,
        description=service_info.description,
        version=service_info.version,
        lifespan=lifespan_func,
        openapi_tags=openapi_tags,
    )

    if include_logging_middleware:
        _add_logging_middleware(app, service_info)
    _add_health_check(app, service_info, health_checks or {})

    logger.info(f"{service_info.name} FastAPI app created")
    return app


def _add_logging_middleware(app: FastAPI, service_info: ServiceInfo) -> None:
    metrics = get_metrics(service_info.name)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        metrics.record_request(request.method, path, response.status_code, process_time)
        logger.info(
            f"Request: {request.method} {request.url.path} - Response: {response.status_code} "
            f"- Time: {process_time:.4f}s"
        )
        return response


def _add_health_check(app: FastAPI, service_info: ServiceInfo,
                      health_checks: Dict[str, HealthCheck]) -> None:

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "service": service_info.name,
            "title": service_info.title,
            "version": service_info.version,
            "status": "running",
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        checks: Dict[str, bool] = {}
        for name, check in health_checks.items():
            try:
                checks[name] = bool(await check(app))
            except Exception as e:
                logger.warning(f"Health check {name} failed: {e}")
                checks[name] = False
        healthy = all(checks.values())
        body: Dict[str, Any] = {
            "status": "healthy" if healthy else "degraded",
            "service": service_info.name,
            "version": service_info.version,
            "checks": checks,
        }
        return JSONResponse(body, status_code=200 if healthy else 503)

    @app.get("/metrics", tags=["Health"], include_in_schema=False)
    async def metrics_endpoint():
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)


def run_service(service_info: ServiceInfo, app_module_path: str, reload: bool = False) -> None:
    """
    Run the service with uvicorn.

    Args:
        service_info: Service configuration
        app_module_path: Module path for uvicorn (e.g., "ingestion_gateway.main:app")
        reload: Enable auto-reload for development
    """
    logger.info(f"Starting {service_info.name} on {service_info.host}:{service_info.port}")
    uvicorn.run(app_module_path, host=service_info.host, port=service_info.port, reload=reload)
