"""
Schemas Pydantic per gli Ordini di Modifica (Change Order)
Progetto: Contractor Manager (Gestionale Cantieri)

Contiene:
- Enums: ChangeOrderStatus, ClientResponse, ChangeOrderItemType, ChangeOrderItemCategory
- Matrice delle transizioni di stato
- Schemas per ChangeOrderItem
- Schemas per ChangeOrder (creazione, modifica, lettura, vista pubblica)
- Schemas per la risposta del cliente
"""

import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from app.core.exceptions import BusinessValidationError


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class ChangeOrderStatus(str, Enum):
    """Stati dell'ordine di modifica."""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"


class ClientResponse(str, Enum):
    """Risposte possibili del cliente."""
    APPROVED = "approved"
    DECLINED = "declined"


class ChangeOrderItemType(str, Enum):
    """Tipo di voce: le detrazioni riducono l'importo della modifica."""
    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"


class ChangeOrderItemCategory(str, Enum):
    """Categoria della voce."""
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    LABOR = "labor"
    PERMITS = "permits"
    OTHER = "other"


# Matrice delle transizioni: gli stati terminali non hanno uscite
CHANGE_ORDER_TRANSITIONS: dict[ChangeOrderStatus, list[ChangeOrderStatus]] = {
    ChangeOrderStatus.PENDING: [
        ChangeOrderStatus.APPROVED,
        ChangeOrderStatus.DECLINED,
        ChangeOrderStatus.EXPIRED,
    ],
    ChangeOrderStatus.APPROVED: [],  # Stato finale
    ChangeOrderStatus.DECLINED: [],  # Stato finale
    ChangeOrderStatus.EXPIRED: [],  # Stato finale
}


def can_transition(current: ChangeOrderStatus, target: ChangeOrderStatus) -> bool:
    """Verifica se la transizione è ammessa dalla matrice."""
    return target in CHANGE_ORDER_TRANSITIONS.get(current, [])


# -------------------------------------------------------------------
# Schemas per ChangeOrderItem
# -------------------------------------------------------------------

class ChangeOrderItemCreate(BaseModel):
    """Schema per una voce dell'ordine di modifica in input."""

    description: str = Field(..., min_length=1, max_length=500, description="Descrizione")
    quantity: Decimal = Field(..., ge=0, description="Quantità")
    unit: Optional[str] = Field(None, max_length=20, description="Unità di misura")
    unit_price: Decimal = Field(..., ge=0, description="Prezzo unitario")
    type: ChangeOrderItemType = Field(
        default=ChangeOrderItemType.ADDITION,
        description="Tipo voce: addition, deletion, modification",
    )
    category: ChangeOrderItemCategory = Field(
        default=ChangeOrderItemCategory.OTHER,
        description="Categoria voce",
    )

    model_config = ConfigDict(extra="forbid")


class ChangeOrderItemRead(BaseModel):
    """Schema per la lettura di una voce."""

    id: str
    position: int
    description: str
    quantity: Decimal
    unit: Optional[str] = None
    unit_price: Decimal
    total: Decimal
    type: ChangeOrderItemType
    category: ChangeOrderItemCategory

    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Schemas per ChangeOrder
# -------------------------------------------------------------------

class ChangeOrderCreate(BaseModel):
    """
    Schema per la creazione di un ordine di modifica.

    NON include (extra="forbid" li rifiuta):
    - status (sempre 'pending' alla creazione)
    - approval_token (generato dal service)
    - client_response* (solo il cliente può impostarli)
    - expires_at (politica di configurazione)
    - new_total_amount (calcolato)

    Se original_amount non è indicato si usa il costo stimato corrente
    del progetto; se change_amount non è indicato si somma il totale
    delle voci (le detrazioni con segno negativo).
    """

    project_id: str = Field(..., min_length=1, max_length=36, description="ID progetto")
    project_name: Optional[str] = Field(None, max_length=255)
    client_id: Optional[str] = Field(None, max_length=36)
    client_name: Optional[str] = Field(None, max_length=255)
    client_email: Optional[EmailStr] = Field(None, description="E-mail del cliente")
    contractor_email: Optional[EmailStr] = Field(
        None,
        description="E-mail del contractor per la conferma di risposta",
    )
    title: str = Field(..., min_length=1, max_length=255, description="Titolo")
    description: str = Field(..., min_length=1, description="Descrizione della modifica")
    reason: str = Field(..., min_length=1, description="Motivazione")
    impact_on_schedule: Optional[str] = Field(None, description="Impatto sul cronoprogramma")
    original_amount: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Importo originale (default: costo stimato del progetto)",
    )
    change_amount: Optional[Decimal] = Field(
        None,
        description="Variazione (default: somma delle voci)",
    )
    items: list[ChangeOrderItemCreate] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("title", "description", "reason")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Rifiuta campi composti solo da spazi."""
        if not v.strip():
            raise ValueError("Il campo non può essere vuoto")
        return v.strip()


class ChangeOrderUpdate(BaseModel):
    """
    Schema per la modifica di un ordine ancora 'pending'.

    Stato, token, risposta e scadenza non sono modificabili.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    reason: Optional[str] = Field(None, min_length=1)
    impact_on_schedule: Optional[str] = None
    client_email: Optional[EmailStr] = None
    contractor_email: Optional[EmailStr] = None
    original_amount: Optional[Decimal] = Field(None, ge=0)
    change_amount: Optional[Decimal] = None
    items: Optional[list[ChangeOrderItemCreate]] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator(
        "title", "description", "reason", "original_amount", "change_amount",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v):
        """I campi obbligatori possono essere omessi ma non impostati a null."""
        if v is None:
            raise ValueError("Il campo non può essere null")
        return v

    @model_validator(mode="after")
    def validate_update(self) -> "ChangeOrderUpdate":
        """Valida che almeno un campo sia stato modificato."""
        if not self.model_fields_set:
            raise BusinessValidationError("È necessario modificare almeno un campo")
        return self


class ChangeOrderRead(BaseModel):
    """Schema per la lettura di un ordine di modifica (lato contractor)."""

    id: str
    user_id: str
    project_id: str
    project_name: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    contractor_email: Optional[str] = None
    change_order_number: str
    title: str
    description: str
    reason: str
    impact_on_schedule: Optional[str] = None
    original_amount: Decimal
    change_amount: Decimal
    new_total_amount: Decimal
    status: ChangeOrderStatus
    approval_token: str
    approval_url: Optional[str] = None
    simple_approval_url: Optional[str] = None
    client_response: Optional[ClientResponse] = None
    client_response_date: Optional[datetime.datetime] = None
    client_response_notes: Optional[str] = None
    expires_at: datetime.datetime
    is_expired: bool = False
    budget_applied_at: Optional[datetime.datetime] = None
    items: list[ChangeOrderItemRead] = Field(default_factory=list)
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class ChangeOrderPublicRead(BaseModel):
    """
    Vista dell'ordine di modifica per il titolare del token.

    Non espone token, user_id né e-mail del contractor.
    """

    id: str
    change_order_number: str
    project_name: Optional[str] = None
    client_name: Optional[str] = None
    title: str
    description: str
    reason: str
    impact_on_schedule: Optional[str] = None
    original_amount: Decimal
    change_amount: Decimal
    new_total_amount: Decimal
    status: ChangeOrderStatus
    client_response: Optional[ClientResponse] = None
    client_response_date: Optional[datetime.datetime] = None
    client_response_notes: Optional[str] = None
    expires_at: datetime.datetime
    is_expired: bool = False
    items: list[ChangeOrderItemRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Schemas per la risposta
# -------------------------------------------------------------------

class ChangeOrderResponseCreate(BaseModel):
    """Risposta del cliente tramite token."""

    response: ClientResponse = Field(..., description="approved o declined")
    notes: Optional[str] = Field(None, max_length=2000, description="Note del cliente")

    model_config = ConfigDict(extra="forbid")


class ChangeOrderDirectApproval(BaseModel):
    """
    Approvazione diretta tramite ID.

    L'accettazione delle condizioni è verificata lato server,
    non solo dalla checkbox dell'interfaccia.
    """

    accept_policies: bool = Field(..., description="Accettazione delle condizioni")
    notes: Optional[str] = Field(None, max_length=2000)

    model_config = ConfigDict(extra="forbid")


class ChangeOrderResponseResult(BaseModel):
    """Esito di una risposta andata a buon fine."""

    id: str
    change_order_number: str
    status: ChangeOrderStatus
    client_response: ClientResponse
    client_response_date: datetime.datetime
    budget_applied: bool = Field(
        False,
        description="True se il delta è già stato applicato al budget di progetto",
    )


class ExpireSweepResult(BaseModel):
    """Esito della scansione scadenze."""

    expired_count: int


class BudgetReconciliationResult(BaseModel):
    """Esito della riconciliazione budget."""

    applied_count: int
    failed_ids: list[str] = Field(default_factory=list)


class ApprovalRequestResult(BaseModel):
    """Esito dell'invio della richiesta di approvazione."""

    sent: bool
    approval_url: str


# Export degli schemas
__all__ = [
    "ChangeOrderStatus",
    "ClientResponse",
    "ChangeOrderItemType",
    "ChangeOrderItemCategory",
    "CHANGE_ORDER_TRANSITIONS",
    "can_transition",
    "ChangeOrderItemCreate",
    "ChangeOrderItemRead",
    "ChangeOrderCreate",
    "ChangeOrderUpdate",
    "ChangeOrderRead",
    "ChangeOrderPublicRead",
    "ChangeOrderResponseCreate",
    "ChangeOrderDirectApproval",
    "ChangeOrderResponseResult",
    "ExpireSweepResult",
    "BudgetReconciliationResult",
    "ApprovalRequestResult",
]
