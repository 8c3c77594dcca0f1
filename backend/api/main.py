"""
PracticeOps API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import DomainError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("PracticeOps API starting up", version=settings.app_version)
    yield
    logger.info("PracticeOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Practice supply ordering and goods-receipt reconciliation",
    lifespan=lifespan,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Render domain errors as typed bodies the dashboard can map to fields."""
    if exc.status_code >= 500:
        logger.error("api.dependency_failure", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import mismatches, orders, receiving

app.include_router(orders.router)
app.include_router(mismatches.router)
app.include_router(receiving.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
