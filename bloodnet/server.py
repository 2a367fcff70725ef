"""
BloodNet API
Application factory: routers, CORS, logging and the JSON error envelope.

Run with ``uvicorn bloodnet.server:app``.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .config import CORS_ORIGINS, LOG_LEVEL
from .database import client
from .errors import BloodNetError, ErrorCategory
from .models import isoformat, utcnow
from .routers import applications, auth, dashboard, donations, reports, requests

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

HTTP_CATEGORIES = {
    400: ErrorCategory.VALIDATION_ERROR,
    401: ErrorCategory.AUTHENTICATION_ERROR,
    403: ErrorCategory.AUTHORIZATION_ERROR,
    404: ErrorCategory.NOT_FOUND_ERROR,
    409: ErrorCategory.CONFLICT_ERROR,
    422: ErrorCategory.VALIDATION_ERROR,
}


def error_envelope(request: Request, status_code: int, category: ErrorCategory, errors: list) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "statusCode": status_code,
            "timestamp": isoformat(utcnow()),
            "path": request.url.path,
            "category": category.value,
            "errors": errors,
        }),
    )


def _validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" prefix so field names match the payload
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        detail = {"message": err.get("msg", "Invalid value")}
        if loc:
            detail["field"] = ".".join(loc)
        if err.get("input") is not None and not isinstance(err.get("input"), dict):
            detail["value"] = err["input"]
        errors.append(detail)
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    client.close()


app = FastAPI(title="BloodNet API", version=__version__, lifespan=lifespan)


@app.exception_handler(BloodNetError)
async def bloodnet_error_handler(request: Request, exc: BloodNetError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return error_envelope(request, exc.status_code, exc.category, exc.details())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_envelope(request, 422, ErrorCategory.VALIDATION_ERROR, _validation_errors(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    category = HTTP_CATEGORIES.get(exc.status_code, ErrorCategory.API_ERROR)
    return error_envelope(request, exc.status_code, category, [{"message": str(exc.detail)}])


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_envelope(request, 500, ErrorCategory.API_ERROR, [{"message": "Internal server error"}])


app.include_router(dashboard.router)
app.include_router(auth.router)
app.include_router(donations.router)
app.include_router(requests.router)
app.include_router(applications.router)
app.include_router(applications.admin_router)
app.include_router(reports.router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
