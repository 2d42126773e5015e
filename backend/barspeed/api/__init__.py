"""API routes."""

from fastapi import APIRouter

from barspeed.api import analyses

api_router = APIRouter()

api_router.include_router(analyses.router, prefix="/analyses", tags=["Analyses"])
