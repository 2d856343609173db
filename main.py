import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from database import db, ensure_indexes, utcnow
from ratelimit import enforce_rate_limit

import admin
import auth
import cart
import catalog
import orders
import reviews
import wishlist

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    missing = config.missing_production_env()
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
    ensure_indexes(db)
    logger.info("Storefront API started [%s]", config.APP_ENV)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan, dependencies=[Depends(enforce_rate_limit)])

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CLIENT_URLS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)

# Baseline hardening headers, as helmet sets them
SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
    "referrer-policy": "no-referrer",
    "x-dns-prefetch-control": "off",
    "x-download-options": "noopen",
    "x-permitted-cross-domain-policies": "none",
    "cross-origin-opener-policy": "same-origin",
    "cross-origin-resource-policy": "same-origin",
}
PRODUCTION_HEADERS = {
    "strict-transport-security": "max-age=15552000; includeSubDomains",
    "content-security-policy": "default-src 'self'; frame-ancestors 'self'; object-src 'none'",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    if config.IS_PRODUCTION:
        response.headers.update(PRODUCTION_HEADERS)
    return response


# Error handling
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(_request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"error": "Resource already exists"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    # Never leak internal details in production
    message = "Internal server error" if config.IS_PRODUCTION else str(exc)
    return JSONResponse(status_code=500, content={"error": message})


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "environment": config.APP_ENV,
        "uptime": int(time.monotonic() - STARTED_AT),
    }


app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(reviews.router)
app.include_router(wishlist.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
