from fastapi import APIRouter

from .routes import emergency, scheduling

api_router = APIRouter()
api_router.include_router(scheduling.router)
api_router.include_router(emergency.router)
