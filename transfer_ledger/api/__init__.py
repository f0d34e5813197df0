"""
Transfer Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional
import time

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from .accounts import router as accounts_router
from .schemas import ErrorDetail, ErrorResponse
from .transfers import router as transfers_router
from .. import __version__
from ..config import get_config
from ..errors import LedgerError
from ..logging_config import get_logger, log_action, setup_logging
from ..system import LedgerSystem


# Error kind -> HTTP status
STATUS_BY_KIND = {
    "InvalidAmount": 400,
    "InvalidAccountNumber": 400,
    "SameAccount": 400,
    "AccountNotFound": 404,
    "NotFound": 404,
    "DuplicateAccountNumber": 409,
    "InsufficientFunds": 422,
    "Cancelled": 503,
    "StorageFailure": 500,
}


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    ledger = system or LedgerSystem()
    service_name = ledger.config.service_name
    logger = get_logger("transfer_ledger.api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        ledger.close()

    app = FastAPI(
        title="Transfers API",
        description="Accounts, ledger entries and atomic double-entry transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.ledger = ledger

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = STATUS_BY_KIND.get(exc.kind, 400)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        body = ErrorResponse(error=ErrorDetail(**exc.to_dict()))
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.middleware("http")
    async def request_telemetry(request: Request, call_next):
        """Log and count every request with its status and latency"""
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start
            endpoint = _endpoint(request)
            if ledger.metrics is not None:
                ledger.metrics.observe_request(request.method, endpoint, status_code, duration)

            path = request.url.path
            if request.url.query:
                path = f"{path}?{request.url.query}"
            log_action(
                logger, "error" if status_code >= 500 else "info",
                f"{request.method} {path} {status_code}",
                action="http_request", resource=endpoint,
                extra={
                    "method": request.method,
                    "path": path,
                    "status": status_code,
                    "latency_ms": round(duration * 1000, 3),
                    "ip": request.client.host if request.client else None,
                    "user_agent": request.headers.get("user-agent")
                }
            )

    # Include routers
    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])
    app.include_router(transfers_router, prefix="/api/transfers", tags=["Transfers"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": service_name}

    @app.get("/ready")
    async def readiness_check():
        """Readiness check endpoint"""
        return {"status": "healthy", "service": service_name}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        if ledger.metrics is None:
            raise HTTPException(status_code=404, detail="Metrics are disabled")
        return Response(ledger.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app


def _endpoint(request: Request) -> str:
    """Matched route template, or the raw path when no route matched"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the API server with settings from the environment"""
    config = get_config()
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        service_name=config.service_name,
        log_file=config.log_file
    )
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
