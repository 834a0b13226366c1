#!/usr/bin/env python
"""
Run the API server.

Usage:
    python run.py

Or with uvicorn directly:
    python -m uvicorn run:app --reload --port 8000
"""

import sys
from pathlib import Path

# Ensure project root is in path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from api.dependencies import get_registry, get_store
from api.sop_routes import router as sop_router
from api.tag_routes import grammar_router, router as tag_router
from sop_engine.utils.logger import get_logger

logger = get_logger("sop_engine.api")


# ============================================================
# APP SETUP
# ============================================================

app = FastAPI(
    title="SOP Rule Engine",
    description="Billing SOP rule extraction, tag governance and conflict resolution API",
    version="0.1.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sop_router)
app.include_router(tag_router)
app.include_router(grammar_router)


# ============================================================
# ROOT ENDPOINTS
# ============================================================

@app.get("/")
async def root():
    return {
        "name": "SOP Rule Engine API",
        "version": "0.1.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    return {"status": "ok"}


# ============================================================
# STARTUP
# ============================================================

@app.on_event("startup")
async def startup():
    """Initialize on startup"""
    config.ensure_dirs()

    # Opens the database, creates the schema and seeds the tag registry
    get_registry(get_store())

    logger.info("API Server started at http://localhost:8000")
    logger.info("Docs available at http://localhost:8000/docs")


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "run:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=[str(PROJECT_ROOT)]
    )
