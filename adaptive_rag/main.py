# main.py
"""Application entry point"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from adaptive_rag.config import settings
from adaptive_rag.services.logger_config import setup_logging
from adaptive_rag.api.endpoints import router
from adaptive_rag.services import factory

# Setup logging
setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # --- Startup ---
    logger.info("Starting application...")

    # Load every stored document at startup
    store = factory.get_vector_store()
    logger.info(f"Vector store ready with {await store.count()} chunks")

    yield

    # --- Shutdown ---
    logger.info("Shutting down application...")
    factory.clear_instances()
    logger.info("Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# Include API routes
app.include_router(router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
