"""
FastAPI Application Entry Point

Integrates:
  - WhatsApp webhook handler (per channel)
  - Sweep endpoint for delays and wait timeouts
  - Health checks
  - Middleware for logging & error handling

Run: uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from transport.whatsapp.webhook import get_engine, router as whatsapp_router
from infra.bootstrap import EngineBootstrap
from config import Config

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan: startup and shutdown handlers.
    """
    # Startup
    engine = EngineBootstrap.get_instance()
    logger.info("=" * 60)
    logger.info("Flow engine starting up...")
    logger.info(f"Environment: {Config.ENVIRONMENT}")
    logger.info(f"Engine: {engine!r}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Flow engine shutting down...")


# Create FastAPI app
app = FastAPI(
    title="WhatsApp Flow Engine",
    description="Executes authored WhatsApp conversation flows",
    version="1.0.0",
    lifespan=lifespan,
)


# Middleware for logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.debug(f"{request.method} {request.url.path}")
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"Request error: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


# Include routers
app.include_router(whatsapp_router)


# Health check endpoints
@app.get("/health/live")
async def health_live():
    """Liveness health check for Kubernetes."""
    return {"status": "alive"}


@app.get("/health/ready")
async def health_ready(engine: EngineBootstrap = Depends(get_engine)):
    """
    Readiness health check for Kubernetes.

    Ready means the configuration is complete and the store answers.
    """
    if not Config.validate():
        return {"status": "not_ready", "reason": "missing configuration"}
    if not engine.store.ping():
        return {"status": "not_ready", "reason": "store unreachable"}
    return {
        "status": "ready",
        "store": engine.config.store_backend,
        "gateway": engine.config.gateway_backend,
        "delay_mode": engine.settings.delay_mode,
        "sweep": "enabled" if engine.config.sweep_token else "disabled",
    }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "WhatsApp Flow Engine",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "webhook_verify": "GET /webhook/{channel_id}",
            "webhook": "POST /webhook/{channel_id}",
            "sweep": "POST /internal/sweep",
            "health_live": "GET /health/live",
            "health_ready": "GET /health/ready",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=Config.APP_PORT,
        reload=Config.ENVIRONMENT == "development",
    )
