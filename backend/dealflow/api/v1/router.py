"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from dealflow.api.v1 import deals, health, jobs, sources, submissions

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(deals.router, prefix="/deals", tags=["deals"])
api_v1_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_v1_router.include_router(sources.router, prefix="/sources", tags=["sources"])
api_v1_router.include_router(submissions.router, prefix="/submissions", tags=["submissions"])
