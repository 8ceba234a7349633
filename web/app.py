"""
FastAPI application exposing the comparables engine to the host back office.

Production deployment configuration via environment variables.
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.comparables import __version__ as ENGINE_VERSION
from web.comparables_routes import router as comparables_router


logger = logging.getLogger(__name__)

# =============================================================================
# Environment Configuration
# =============================================================================

# Production mode detection
IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

# CORS configuration - locked down for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


app = FastAPI(
    title="Comparables Engine",
    version=ENGINE_VERSION,
    docs_url=None if IS_PRODUCTION else "/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)

app.include_router(comparables_router)


@app.get("/health")
def health():
    """Liveness probe."""
    return {"status": "ok", "engine_version": ENGINE_VERSION}
