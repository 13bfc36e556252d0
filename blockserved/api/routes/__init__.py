"""API route aggregation.

All sub-routers are collected into a single api_router that the
app factory mounts under the configured prefix.
"""

from fastapi import APIRouter

from blockserved.api.routes import health, notices, recipient_logs

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(notices.router)
api_router.include_router(recipient_logs.router)
