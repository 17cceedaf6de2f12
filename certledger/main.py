# certledger/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from certledger.api.v1.router import api_router
from certledger.core.config import settings
from certledger.core.errors import CertLedgerError
from certledger.core.logging import setup_logging
from certledger.db.bootstrap import run_migrations_and_seed
from certledger.db.session import SessionLocal
from certledger.services.runtime import build_services

setup_logging()
logger = logging.getLogger("certledger")

api = FastAPI(
    title="certledger - certificate lifecycle",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    swagger_ui_parameters={"displayRequestDuration": True, "persistAuthorization": True},
)

api.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# /metrics (Prometheus)
Instrumentator().instrument(api).expose(api, include_in_schema=False, should_gzip=True)

api.include_router(api_router, prefix="/api/v1")


@api.get("/healthz", tags=["health"])
def healthz():
    services = getattr(api.state, "services", None)
    if services is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    checks = services.health()
    ready = checks["ledger"]["state"] == "ready"
    return JSONResponse(status_code=200 if ready else 503,
                        content={"status": "ok" if ready else "degraded", "services": checks})


@api.on_event("startup")
def startup():
    run_migrations_and_seed()
    api.state.services = build_services(settings, SessionLocal)
    api.state.services.start()


@api.on_event("shutdown")
def shutdown():
    services = getattr(api.state, "services", None)
    if services is not None:
        services.stop()


@api.exception_handler(CertLedgerError)
def handle_certledger_error(request: Request, exc: CertLedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@api.exception_handler(IntegrityError)
def handle_integrity_error(request: Request, exc: IntegrityError):
    return JSONResponse(
        status_code=409,
        content={"code": "UNIQUE_VIOLATION", "message": "Duplicate record.", "details": str(getattr(exc, "orig", exc))},
    )


@api.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"code": "INTERNAL_ERROR", "message": "Internal error.", "details": str(exc)},
    )
