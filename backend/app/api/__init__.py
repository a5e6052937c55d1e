"""
API Routes
Progetto: Contractor Manager (Gestionale Cantieri)

Modulo per l'aggregazione dei router versionati.
"""

from app.api.v1 import api_v1_router

# Esportazione router
__all__ = ["api_v1_router"]
