import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kostnadskoll.api.v1.account import router as account_router
from kostnadskoll.api.v1.history import router as history_router
from kostnadskoll.api.v1.market import router as market_router
from kostnadskoll.api.v1.savings import router as savings_router
from kostnadskoll.api.v1.scan import router as scan_router
from kostnadskoll.api.v1.templates import router as templates_router
from kostnadskoll.core.config import get_settings

settings = get_settings()

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "Ett internt fel inträffade"

app = FastAPI(
    title="Kostnadskoll API",
    version="0.4.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(scan_router, prefix="/api/v1", tags=["scan"])
app.include_router(history_router, prefix="/api/v1", tags=["history"])
app.include_router(account_router, prefix="/api/v1", tags=["account"])
app.include_router(market_router, prefix="/api/v1", tags=["market"])
app.include_router(savings_router, prefix="/api/v1", tags=["savings"])
app.include_router(templates_router, prefix="/api/v1", tags=["templates"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 502 carries a user-facing upstream message; plain 500s never leak internals.
    if exc.status_code == 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": INTERNAL_ERROR_DETAIL})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR_DETAIL})


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.security_headers_enabled:
        return response

    headers = response.headers
    headers.setdefault("X-Content-Type-Options", "nosniff")
    headers.setdefault("X-Frame-Options", "DENY")
    headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        # Responses carry invoice data.
        headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
