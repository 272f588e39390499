"""
QazaqCode API - main entry point.
Creates FastAPI app, sets up lifespan (indexes), CORS, registers all routes.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from app.config import logger, get_version_info
from app.database import client, ensure_indexes
from app.routes import register_all_routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - prepares indexes, closes the Mongo client"""
    logger.info("🚀 FastAPI app starting up...")
    logger.info("REGISTERED ROUTES: %s", [r.path for r in app.routes])

    try:
        await ensure_indexes()
    except PyMongoError as e:
        logger.error(f"❌ Failed to create indexes: {e}")
        logger.error("⚠️  Duplicate progress documents are possible until indexes exist!")
    logger.info("=" * 60)

    yield

    logger.info("🛑 FastAPI app shutting down...")
    client.close()


# Create the main app with lifespan
app = FastAPI(title="QazaqCode API", lifespan=lifespan)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/version")
async def get_version():
    """Public version endpoint for deployment verification"""
    return get_version_info()


# Register all route modules on the api_router
register_all_routes(api_router)

# Include the api_router on the app
app.include_router(api_router)


# Root-level health check endpoint (for Kubernetes probes)
@app.get("/health")
async def root_health_check():
    """Health check for Kubernetes liveness/readiness probes"""
    return {"status": "healthy", "service": "QazaqCode API"}


# ============== CORS ==============

cors_origins_env = os.environ.get("CORS_ORIGINS")
cors_origins = [origin.strip() for origin in cors_origins_env.split(",")] if cors_origins_env else [
    "http://localhost:3000",
    "http://127.0.0.1:3000"
]

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
