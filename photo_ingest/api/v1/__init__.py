"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/photos/*  - Tiered photo ingestion
- /api/v1/metrics   - Prometheus scrape endpoint
"""

from fastapi import APIRouter

from photo_ingest.api.v1.photos import router as photos_router
from photo_ingest.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(photos_router, prefix="/photos", tags=["photos"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
