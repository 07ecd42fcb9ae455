import logging
import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import router as v1_router
from app.core import database
from app.core.config import settings
from app.core.constants import ERROR_INTERNAL, ERROR_VALIDATION, VERSION
from app.core.exceptions import PodcastSearchError, RateLimitedError
from app.core.logging_utils import setup_logging
from app.schemas.common import error_response
from app.services.container import get_container

# Configurar Logging (JSON Structured)
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version=VERSION)
app.include_router(v1_router, prefix=settings.API_PREFIX)


# Iniciar loops em background (sweep do cache + worker da fila) no startup
@app.on_event("startup")
async def startup_event():
    """Executado quando a aplicação inicia"""
    await get_container().start()
    logger.info("🚀 Aplicação inicializada com sucesso")


@app.on_event("shutdown")
async def shutdown_event():
    """Executado quando a aplicação encerra"""
    await get_container().stop()
    logger.info("👋 Aplicação encerrada")


# --- Global Exception Handlers ---

@app.exception_handler(PodcastSearchError)
async def podcast_search_exception_handler(request: Request, exc: PodcastSearchError):
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(math.ceil(exc.retry_after))
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {request.url.path}: {exc.message}")
    else:
        logger.warning(f"[{exc.code}] {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", [])), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_response(ERROR_VALIDATION, "Invalid request parameters", errors),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(f"HTTP_{exc.status_code}", str(exc.detail)),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global Error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response(ERROR_INTERNAL, "An unexpected error occurred"),
    )


@app.get("/")
async def root():
    return {"status": "ok", "service": settings.APP_NAME, "version": VERSION}


@app.get("/health")
async def health():
    """
    Health check. Com STORAGE_BACKEND=postgres inclui teste de conexão.
    """
    container = get_container()
    body = {
        "status": "ok",
        "storage": container.settings.STORAGE_BACKEND,
        "worker": container.worker.is_processing,
    }
    if container.settings.uses_postgres:
        db_ok = await database.test_connection()
        body["database"] = "ok" if db_ok else "error"
        if not db_ok:
            body["status"] = "degraded"
            return JSONResponse(status_code=503, content=body)
    return body
