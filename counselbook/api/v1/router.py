"""
API v1 router setup
Organized into: public (no auth), dashboard (JWT) and payment callbacks
"""
from fastapi import APIRouter

from counselbook.api.v1 import appointments, calendar, payments, public

api_v1_router = APIRouter()

# ============================================================================
# PUBLIC ROUTES (No authentication required)
# ============================================================================
api_v1_router.include_router(public.router)

# ============================================================================
# DASHBOARD ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(calendar.router, prefix="/dashboard")
api_v1_router.include_router(appointments.router, prefix="/dashboard")

# ============================================================================
# PAYMENT CALLBACKS (JWT authentication + admin role required)
# ============================================================================
api_v1_router.include_router(payments.router)


@api_v1_router.get("/", tags=["Info"])
def api_info():
    """API information and authentication overview."""
    return {
        "version": "1.0",
        "authentication": {
            "public": "No authentication required",
            "dashboard": "JWT Bearer token required (counselor or admin)",
            "payments": "JWT Bearer token + admin role required"
        }
    }
