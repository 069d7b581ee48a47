from fastapi import APIRouter

from rendezvous.api.routes import appointments, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
