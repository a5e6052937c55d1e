"""
Schemas Pydantic per i Progetti
Progetto: Contractor Manager (Gestionale Cantieri)

Solo la parte di budget del progetto.
"""

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    """Schema per la creazione di un progetto."""

    name: str = Field(..., min_length=1, max_length=255, description="Nome del progetto")
    estimated_cost: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Costo stimato iniziale",
    )
    actual_cost: Decimal = Field(default=Decimal("0"), ge=0)

    model_config = ConfigDict(extra="forbid")


class ProjectRead(BaseModel):
    """Schema per la lettura di un progetto."""

    id: str
    user_id: str
    name: str
    estimated_cost: Decimal
    actual_cost: Decimal
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


__all__ = ["ProjectCreate", "ProjectRead"]
