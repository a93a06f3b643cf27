import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
)
from backend.errors import GeoAttendError, InternalError
from backend.logging_config import configure_logging
from backend.routers import attendance, core, otp
from database.db import create_tables

configure_logging()
logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    yield


app = FastAPI(title="GeoAttend API", lifespan=lifespan)

# -----------------------------
# CORS
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -----------------------------
# Error translation: every failure leaves as {"error": message}
# -----------------------------
@app.exception_handler(GeoAttendError)
async def geoattend_error_handler(request: Request, exc: GeoAttendError):
    if isinstance(exc, InternalError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"error": GENERIC_ERROR_MESSAGE}, status_code=exc.status_code)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    missing = any(err.get("type") == "missing" for err in exc.errors())
    message = "Missing required fields" if missing else "Invalid request fields"
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": GENERIC_ERROR_MESSAGE}, status_code=500)


# -----------------------------
# Routers
# -----------------------------
app.include_router(core.router)
app.include_router(otp.router)
app.include_router(attendance.router)
