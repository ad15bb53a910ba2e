"""
Main FastAPI application entry point.
Responsibilities: App setup, router registration, error rendering, startup/shutdown hooks.
"""
import re
import uuid
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import init_db
from .dependencies import get_services
from .embedding import SentenceTransformerEmbedder
from .errors import PKCError
from .logging_config import bind_request_context, clear_request_context, logger
from .routes import chat, files, models

# -------------------------------------------------
# App setup
# -------------------------------------------------

app = FastAPI(title="Personal Knowledge Chat", version="0.1.0")

# Register routers
app.include_router(chat.router)
app.include_router(files.router)
app.include_router(models.router)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its id and echo the id back."""
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    request_id = incoming if _REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
    bind_request_context(request_id, request.method, request.url.path)
    start = perf_counter()
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "Request completed",
            status_code=response.status_code,
            time_ms=round((perf_counter() - start) * 1000, 2),
        )
        return response
    finally:
        clear_request_context()


@app.exception_handler(PKCError)
async def pkc_error_handler(request: Request, exc: PKCError):
    """Render pipeline errors as {"ok": false, "error": code, "detail": message}."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        error=exc.code,
        status_code=exc.status_code,
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": exc.message},
    )


@app.on_event("startup")
async def startup_event():
    """Initialize the database and warm up the embedding model."""
    logger.info("Running database migrations...")
    init_db()
    logger.info("Database migrations completed")

    if get_settings().embedding_backend != "sentence-transformers":
        return
    embedder = getattr(get_services().embedder, "inner", None)
    if isinstance(embedder, SentenceTransformerEmbedder):
        logger.info("Preloading embedding model...")
        embedder.preload()
        logger.info("Embedding model ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Application shutting down")
