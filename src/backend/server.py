"""
MK Volume Bot Backend Server
FastAPI purchase recording endpoint for SOL plan payments
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from src.config import get_backend_config
from src.backend.dependencies import limiter, close_verifier
from src.backend.routers import general, payments

# Initialize structured logger
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI app"""
    config = get_backend_config()
    logger.info(
        "backend_starting",
        host=config.backend_host,
        port=config.backend_port,
        verify_transactions=config.verify_transactions,
        treasury=config.treasury_address
    )
    yield
    await close_verifier()
    logger.info("backend_shutting_down")


# Initialize FastAPI app
app = FastAPI(
    title="MK Volume Bot Backend",
    description="Purchase recording for MK Volume Bot trading-time plans",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_backend_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(general.router)
app.include_router(payments.router)


if __name__ == "__main__":
    import uvicorn
    config = get_backend_config()

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer() if config.log_format == "json" else structlog.dev.ConsoleRenderer()
        ]
    )

    uvicorn.run(
        "src.backend.server:app",
        host=config.backend_host,
        port=config.backend_port,
        reload=config.reload,
        log_level=config.log_level.lower()
    )
