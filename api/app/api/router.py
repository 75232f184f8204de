"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import automations, events, ops, recurring

api_router = APIRouter()
api_router.include_router(automations.router, tags=["automations"])
api_router.include_router(events.router, prefix="/boards", tags=["events"])
api_router.include_router(recurring.router, prefix="/cards", tags=["recurring"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
