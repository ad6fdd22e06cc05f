from fastapi import APIRouter

from relay_api.api.routes import admin, health, jobs, members, resources, sources

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(sources.router, prefix="/sources", tags=["fetcher"])
api_router.include_router(members.router, prefix="/members", tags=["members"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["worker"])
api_router.include_router(resources.router, prefix="/resources", tags=["review"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
