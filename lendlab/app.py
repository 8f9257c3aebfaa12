#!/usr/bin/env python3

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from lendlab.routes import api
from lendlab.configs import OPTIONS, S3_CONFIG
from lendlab.core.db import Database
from lendlab.core.exceptions import LendLabError, ValidationError
from lendlab.core.s3 import LendLabS3
from lendlab import __version__ as VERSION

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "db", None) is None:
        app.state.db = Database().init()
    if not hasattr(app.state, "storage"):
        app.state.storage = LendLabS3() if S3_CONFIG['endpoint'] else None
    logger.info("LendLab started")
    yield
    app.state.db.dispose()
    logger.info("LendLab stopped")

async def lendlab_error_handler(request: Request, exc: LendLabError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors)
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=ValidationError(detail or "Invalid request.").to_dict(),
    )

def create_app(db: Database = None, storage=None) -> FastAPI:
    """Builds the application; tests pass their own database and storage."""
    app = FastAPI(
        title="LendLab API",
        description="LendLab: equipment reservations and borrow lifecycle for labs",
        version=VERSION,
        lifespan=lifespan,
    )
    if db is not None:
        app.state.db = db
    if storage is not None:
        app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LendLabError, lendlab_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(api.router, prefix="/v1/api")
    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("lendlab.app:app", **OPTIONS)
