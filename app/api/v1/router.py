"""API v1 router - combines all endpoint routers."""

from fastapi import APIRouter, Depends

from app.api.v1.endpoints import carriers, health, telephony
from app.core.security import verify_api_key

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])

# LiveKit webhook is authenticated by its signed token, not the API key
api_router.include_router(telephony.router, prefix="/telephony", tags=["Telephony"])

# Carrier onboarding
management = [Depends(verify_api_key)]
api_router.include_router(
    carriers.bindings_router, prefix="/telephony", tags=["Telephony Bindings"], dependencies=management
)
api_router.include_router(
    carriers.twilio_router, prefix="/telephony/twilio", tags=["Twilio"], dependencies=management
)
api_router.include_router(
    carriers.telnyx_router, prefix="/telephony/telnyx", tags=["Telnyx"], dependencies=management
)
api_router.include_router(
    carriers.plivo_router, prefix="/telephony/plivo", tags=["Plivo"], dependencies=management
)
