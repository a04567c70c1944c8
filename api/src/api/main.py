"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.config import settings
from api.routes import descriptions, locations, maps
from multas_core.logging_config import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    # Snapshots are built lazily and rebuilt when their judgments change.
    app.state.classifier = None
    app.state.resolver = None
    yield


app = FastAPI(
    title="Multas API",
    description="Map and curation API for enriched traffic-infraction records",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(maps.router, prefix="/api/v1/map", tags=["map"])
if settings.enable_curation:
    app.include_router(descriptions.router, prefix="/api/descriptions", tags=["descriptions"])
    app.include_router(locations.router, prefix="/api/locations", tags=["locations"])


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
