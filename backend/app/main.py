# backend/app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import init_db
from .domain.errors import AppraisalHubError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware, get_request_id
from .middleware.structured_logging import StructuredLoggingMiddleware
from .services.change_relay import ChangeRelay
from .services.report_renderer import PdfReportRenderer
from .services.report_storage import LocalReportStorage
from .workers.appraisal_tasks import enqueue_valuation

from .routers.health import router as health_router
from .routers.auth import router as auth_router
from .routers.appraisals import router as appraisals_router
from .routers.functions import router as functions_router
from .routers.reports import router as reports_router
from .routers.dashboard import router as dashboard_router
from .routers.admin import router as admin_router
from .routers.realtime import router as realtime_router
from .routers.properties import router as properties_router
from .routers.teams import router as teams_router

API_PREFIX = "/api"

log = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


async def _domain_error(request: Request, exc: AppraisalHubError) -> JSONResponse:
    body = exc.as_dict()
    body["request_id"] = get_request_id() or getattr(request.state, "request_id", None)
    if exc.status_code >= 500:
        log.error("%s: %s", exc.code, exc.message, extra={"path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=body)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # malformed bodies share the 400 shape of domain validation errors
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": "request validation failed",
            "details": {
                "errors": [
                    {"loc": [str(x) for x in e.get("loc", ())], "msg": str(e.get("msg")), "type": str(e.get("type"))}
                    for e in exc.errors()
                ]
            },
            "request_id": get_request_id(),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    log.info("appraisalhub api starting (env=%s, version=%s)", settings.app_env, settings.app_version)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="AppraisalHub API", version=settings.app_version, lifespan=lifespan)

    app.state.change_relay = ChangeRelay()
    app.state.report_renderer = PdfReportRenderer()
    app.state.report_storage = LocalReportStorage()
    app.state.valuation_trigger = enqueue_valuation

    app.add_middleware(StructuredLoggingMiddleware)
    # added last so it runs first: the access log sees the request id
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppraisalHubError, _domain_error)
    app.add_exception_handler(RequestValidationError, _validation_error)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(appraisals_router, prefix=API_PREFIX)
    app.include_router(functions_router, prefix=API_PREFIX)
    app.include_router(reports_router, prefix=API_PREFIX)
    app.include_router(dashboard_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)
    app.include_router(realtime_router, prefix=API_PREFIX)
    app.include_router(properties_router, prefix=API_PREFIX)
    app.include_router(teams_router, prefix=API_PREFIX)
    return app


app = create_app()
