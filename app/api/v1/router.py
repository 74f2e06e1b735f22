"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.matching import router as matching_router
from app.api.v1.periods import router as periods_router
from app.api.v1.suspense import router as suspense_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    periods_router,
    prefix="/periods",
    tags=["Períodos de Conciliación"],
)

api_v1_router.include_router(
    matching_router,
    prefix="/lines",
    tags=["Conciliación Manual"],
)

api_v1_router.include_router(
    suspense_router,
    prefix="/suspense",
    tags=["Partidas en Suspenso"],
)
