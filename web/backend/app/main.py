"""FastAPI application for the Vigil security engine.

Provides REST API endpoints wrapping the Vigil Python package for:
- Rate-limit checks (fail fast before mutating actions)
- Manual security assessments
- Data-event intake for the monitoring pipeline
- Violation lookups, audit log queries and export
- AVG/GDPR request validation
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the vigil package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vigil import __version__
from web.backend.app.routers import security

app = FastAPI(
    title="Vigil API",
    description=(
        "REST API for the Vigil security engine. "
        "Provides endpoints for rate limiting, threat monitoring, "
        "security assessments, audit logs and GDPR request validation."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(security.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "Vigil API",
        "version": __version__,
        "description": "Security monitoring and rate-limiting REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
