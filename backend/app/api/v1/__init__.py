"""
API v1 Routes
Progetto: Contractor Manager (Gestionale Cantieri)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import approvals, change_orders, invoices, projects

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli (pubblici prima di quelli con path parametrici)
api_v1_router.include_router(approvals.router)
api_v1_router.include_router(change_orders.router)
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(projects.router)

# Esportazione
__all__ = ["api_v1_router"]
