"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import queues, reports

api_router = APIRouter()

api_router.include_router(queues.router, prefix="/queues", tags=["Queues"])
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
