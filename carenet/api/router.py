from fastapi import APIRouter
from carenet.modules.relationships.router import router as relationships_router
from carenet.modules.consent.router import router as consent_router
from carenet.modules.geofence.router import router as geofence_router
from carenet.modules.alerts.router import router as alerts_router
from carenet.modules.profiles.router import router as profiles_router

api_router = APIRouter()
api_router.include_router(relationships_router, tags=["relationships"])
api_router.include_router(consent_router, tags=["consent"])
api_router.include_router(geofence_router, tags=["geofence"])
api_router.include_router(alerts_router, tags=["alerts"])
api_router.include_router(profiles_router, tags=["profiles"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
