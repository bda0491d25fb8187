from fastapi import APIRouter
from app.routers import pto_admin, pto_approvals, pto_balances, pto_requests

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(pto_requests.router, tags=["PTO Requests"])
api_router.include_router(pto_approvals.router, tags=["PTO Approvals"])
api_router.include_router(pto_balances.router, tags=["PTO Balances"])
api_router.include_router(pto_admin.router, tags=["PTO Administration"])
