"""
SportsFest Registration API

FastAPI application entry point: carts with live stock reservations,
tent quotas, Stripe checkout and the admin inventory report.
"""
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from sportsfest import __version__
from sportsfest.api.routes import admin, cart, checkout, products
from sportsfest.core.config import settings
from sportsfest.core.database import AsyncSessionLocal
from sportsfest.core.exceptions import SportsFestError
from sportsfest.core.rate_limit import limiter, rate_limit_exceeded_handler
from sportsfest.core.redis_client import close_redis

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"{settings.APP_NAME} started (environment={settings.ENVIRONMENT})")
    yield
    await close_redis()
    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Registration checkout: inventory reservations, tent quotas and payments",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(SportsFestError)
async def sportsfest_error_handler(request: Request, exc: SportsFestError) -> JSONResponse:
    log = logger.warning if exc.status_code >= 500 or exc.severity in ("P0", "P1") else logger.info
    log(f"{request.method} {request.url.path} -> {exc!r}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


app.include_router(cart.router)
app.include_router(products.router)
app.include_router(checkout.router)
app.include_router(admin.router)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with actual DB ping.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sportsfest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
