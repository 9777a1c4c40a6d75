"""
meetmatch - FastAPI Application Setup

Main FastAPI application that provides:
- Mutual availability matching for two or more participants
- Free-text meeting requests parsed into constraints
- Per-user working-hours insights
- Health monitoring
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..utils.config import config
from ..agent.matching_service import MatchingService
from .availability_routes import availability_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.api.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    try:
        logger.info("Starting meetmatch...")

        service = MatchingService()
        if not await service.initialize():
            logger.warning("Calendar source unavailable at startup - requests will use default patterns")

        app.state.matching_service = service

        logger.info("meetmatch started successfully")
        yield

    finally:
        logger.info("Shutting down meetmatch...")
        if getattr(app.state, 'matching_service', None) is not None:
            await app.state.matching_service.cleanup()
        logger.info("meetmatch shutdown complete")

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="meetmatch",
        description="Mutual-availability matching across participants' calendars",
        version="1.0.0",
        docs_url="/docs" if config.api.debug else None,
        redoc_url="/redoc" if config.api.debug else None,
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Add custom middleware for request logging
    @app.middleware("http")
    async def log_requests(request, call_next):
        start_time = asyncio.get_event_loop().time()
        response = await call_next(request)
        process_time = asyncio.get_event_loop().time() - start_time

        logger.info(
            f"{request.method} {request.url.path} "
            f"completed in {process_time:.3f}s with status {response.status_code}"
        )
        return response

    # Include API routers
    app.include_router(
        availability_router,
        prefix="/api",
        tags=["Availability"]
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring and load balancing"""
        service = getattr(app.state, 'matching_service', None)
        status = {
            "status": "healthy" if service is not None else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "matching_service": "healthy" if service is not None else "unavailable",
                "calendar_source": type(service.source).__name__ if service is not None else "unknown"
            }
        }
        if service is None:
            return JSONResponse(status_code=503, content=status)
        return status

    return app

# Create the app instance
app = create_app()

# Start the server
def start_server():
    """Start the FastAPI server with uvicorn"""
    uvicorn.run(
        "meetmatch.api.main:app",
        host=config.api.host,
        port=config.api.port,
        reload=config.api.debug,
        log_config=config.get_log_config(),
        access_log=True
    )

if __name__ == "__main__":
    start_server()
