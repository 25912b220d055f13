"""API v1 router aggregation."""

from fastapi import APIRouter
from mockup_queue.api.v1.endpoints import credits, health, jobs, queue, webhooks

api_router = APIRouter(prefix="/api/v1")

# Include routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(queue.router, prefix="/queue", tags=["queue"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
