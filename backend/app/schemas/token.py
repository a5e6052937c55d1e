"""
Schemas Pydantic per l'autenticazione JWT
Progetto: Contractor Manager (Gestionale Cantieri)

I token sono emessi dal servizio di autenticazione esterno:
qui viene solo letto il payload per identificare il contractor.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID del contractor
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token ("access" o "refresh")
    """

    sub: str = Field(..., description="ID contractor")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(..., description="Tipo di token (access/refresh)")
    email: Optional[str] = Field(None, description="E-mail del contractor, se presente")


# Export degli schemas
__all__ = [
    "TokenPayload",
]
