"""
FastAPI application entry point for the CRM backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crm.config import get_settings
from crm.db import BackendUnavailable
from crm.dependencies import get_customer_store
from crm.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to serve traffic without a reachable store.
    try:
        get_customer_store().check_connection()
    except BackendUnavailable:
        logger.critical("Customer store unreachable at startup; shutting down")
        raise
    yield


async def backend_unavailable_handler(
    request: Request, exc: BackendUnavailable
) -> JSONResponse:
    logger.error("Store unavailable while serving %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503, content={"detail": "Storage backend unavailable"}
    )


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="CRM Backend (FastAPI)", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix=settings.api_prefix)
    app.add_exception_handler(BackendUnavailable, backend_unavailable_handler)
    return app


app = create_app()
