# main.py — BoardForge API
# Features:
# - Request correlation IDs bound to the structured logger
# - AI board generation (HTTP + WebSocket events)
# - Health check with DB and backend availability
# - Observability endpoints

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from ai_tokens import ENV_KEYS
from board_pipeline import BOARD_AI_ENABLED, BoardGenerationPipeline, get_pipeline
from board_schema import PIPELINE_VERSION
from database import init_db, close_db, get_db_context
from logging_system import RequestContext, get_logger, reset_current_context, set_current_context
from telemetry import setup_telemetry

VERSION = "1.0.0"

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("boardforge")


def _check_startup_config():
    """Validate generative backend configuration on startup."""
    warnings = []

    provider = os.getenv("BOARD_AI_PROVIDER", "google").lower()
    if provider not in ENV_KEYS:
        warnings.append(f"BOARD_AI_PROVIDER={provider!r} is not one of {', '.join(ENV_KEYS)}; using google")

    configured = [name for name, key in ENV_KEYS.items() if os.getenv(key)]
    if configured:
        logger.info(f"AI providers with environment keys: {', '.join(configured)}")
    else:
        warnings.append(
            "No AI provider key in the environment. Boards come from templates unless an "
            "active token is stored in the database. Set GOOGLE_API_KEY, OPENAI_API_KEY or GROQ_API_KEY"
        )

    if not BOARD_AI_ENABLED:
        warnings.append("BOARD_AI_ENABLED=false: every board is synthesized from templates")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting BoardForge v{VERSION}...")
    await init_db()
    logger.info("Database initialized")
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)
    yield
    logger.info("Shutting down BoardForge...")
    await close_db()


app = FastAPI(
    title="BoardForge",
    description="AI-assisted project board generation",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    slog = get_logger()
    token = set_current_context(RequestContext.create(correlation_id=correlation_id, request_id=request_id))
    start = time.perf_counter()
    try:
        slog.request(request.method, request.url.path)
        response = await call_next(request)
        duration = time.perf_counter() - start
        slog.response(response.status_code, duration_ms=duration * 1000)
    finally:
        reset_current_context(token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import ai_socket, board_generation, observability

app.include_router(board_generation.router)
app.include_router(ai_socket.router)
app.include_router(observability.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check(pipeline: BoardGenerationPipeline = Depends(get_pipeline)):
    """Health check with database and AI backend status"""
    db_status = "unknown"
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    pipeline_status = await pipeline.status()
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "pipeline_version": PIPELINE_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "services": {
            "api": "operational",
            "ai": "operational" if pipeline_status["available"] else "fallback",
            "websocket": "operational",
        },
    }


@app.get("/")
async def root():
    return {
        "name": "BoardForge",
        "version": VERSION,
        "description": "AI-assisted project board generation",
        "docs": "/docs",
        "health": "/health",
        "websocket": "/ws/ai",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
