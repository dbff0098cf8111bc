# backend/schooldb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import SchoolDBError

from .apps.schools.router import router as schools_router
from .apps.roster.router import router as roster_router
from .apps.subscriptions.router import router as subscriptions_router
from .apps.subscriptions.router_pesapal import router as pesapal_router
from .apps.apikeys.router import router as api_keys_router
from .apps.apikeys.router_external import router as external_router

logger = logging.getLogger(__name__)

API_PREFIX = os.getenv("API_PREFIX", "/api/v1")


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env (comma-separated).

    Defaults to the local frontend dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


app = FastAPI(title="School Manager API", version="1.0.0")
cors_origins = _allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Trial-Days-Left",
        "X-Subscription-Days-Left",
        "X-Grace-Days-Left",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
)


@app.exception_handler(SchoolDBError)
async def handle_domain_error(request: Request, exc: SchoolDBError):
    if exc.status_code >= 500:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers or None)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "School Manager backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(schools_router, prefix=API_PREFIX)
app.include_router(roster_router, prefix=API_PREFIX)
app.include_router(subscriptions_router, prefix=API_PREFIX)
app.include_router(pesapal_router, prefix=API_PREFIX)
app.include_router(api_keys_router, prefix=API_PREFIX)
app.include_router(external_router, prefix=API_PREFIX)
