"""
SupplementScribe Ingestion API Entry Point

Use this file for deployment:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ingestion_engine import __version__
from ingestion_engine.api import register_ingestion_endpoints
from ingestion_engine.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    app.state.db_pool = None
    if settings.database_url:
        try:
            app.state.db_pool = await asyncpg.create_pool(settings.database_url, min_size=1, max_size=5)
            logger.info("Database pool ready")
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Database pool creation failed: {type(e).__name__}: {e}")
    else:
        logger.warning("DATABASE_URL not configured - uploads will answer 503")

    yield

    if app.state.db_pool is not None:
        await app.state.db_pool.close()


app = FastAPI(
    title="SupplementScribe Ingestion API",
    description="Resilient ingestion of lab and genetic reports",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

register_ingestion_endpoints(app)


@app.get("/")
def root():
    return {"service": "supplementscribe-ingestion", "version": __version__}


# For local development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
