"""
Schemas Pydantic per la Fatturazione
Progetto: Contractor Manager (Gestionale Cantieri)

Contiene:
- Enums: PaymentMethod, InvoiceStatus, InvoiceType, InvoiceItemCategory
- Matrice delle transizioni di stato persistito
- Schemas per InvoiceItem
- Schemas per Payment
- Schemas per Invoice
- Schemas per le statistiche
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

class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati."""
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class InvoiceStatus(str, Enum):
    """
    Stato della fattura.

    OVERDUE non viene mai persistito: è la vista in lettura
    di una fattura 'sent' oltre la scadenza.
    """
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class InvoiceType(str, Enum):
    """Tipi di fattura."""
    PROGRESS = "progress"
    FINAL = "final"
    CHANGE_ORDER = "change_order"
    RETAINER = "retainer"


class InvoiceItemCategory(str, Enum):
    """Categoria della riga."""
    LABOR = "labor"
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    SUBCONTRACTOR = "subcontractor"
    OTHER = "other"


# Transizioni esplicite dello stato persistito; '* → paid' avviene
# solo tramite il registro pagamenti (add_payment / mark_as_paid)
INVOICE_TRANSITIONS: dict[InvoiceStatus, list[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: [InvoiceStatus.SENT, InvoiceStatus.CANCELLED],
    InvoiceStatus.SENT: [InvoiceStatus.CANCELLED],
    InvoiceStatus.PAID: [],  # Stato finale
    InvoiceStatus.CANCELLED: [],  # Stato finale
}


# -------------------------------------------------------------------
# Schemas per InvoiceItem
# -------------------------------------------------------------------

class InvoiceItemCreate(BaseModel):
    """Schema per una riga fattura in input."""

    description: str = Field(..., min_length=1, max_length=500, description="Descrizione")
    quantity: Decimal = Field(..., ge=0, description="Quantità")
    unit: Optional[str] = Field(None, max_length=20, description="Unità di misura")
    unit_price: Decimal = Field(..., ge=0, description="Prezzo unitario")
    category: InvoiceItemCategory = Field(default=InvoiceItemCategory.OTHER)

    model_config = ConfigDict(extra="forbid")


class InvoiceItemRead(BaseModel):
    """Schema per la lettura di una riga fattura."""

    id: str
    position: int
    description: str
    quantity: Decimal
    unit: Optional[str] = None
    unit_price: Decimal
    total: Decimal
    category: InvoiceItemCategory

    model_config = ConfigDict(from_attributes=True)


class InvoiceTotals(BaseModel):
    """Totali calcolati di una fattura."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal


# -------------------------------------------------------------------
# Schemas per Payment
# -------------------------------------------------------------------

class PaymentCreate(BaseModel):
    """
    Schema per registrare un pagamento su una fattura.

    L'importo > 0 è verificato anche dal service, prima di ogni scrittura.
    """

    amount: Decimal = Field(..., description="Importo del pagamento")
    payment_date: datetime.date = Field(..., description="Data pagamento")
    method: PaymentMethod = Field(..., description="Metodo di pagamento")
    reference: Optional[str] = Field(
        None,
        max_length=255,
        description="Riferimento (numero assegno, ID bonifico, etc.)",
    )
    notes: Optional[str] = Field(None, description="Note aggiuntive sul pagamento")

    model_config = ConfigDict(extra="forbid")


class PaymentRead(BaseModel):
    """Schema per leggere un pagamento esistente."""

    id: str
    invoice_id: str
    amount: Decimal
    payment_date: datetime.date
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResult(BaseModel):
    """Esito della registrazione di un pagamento con lo stato aggiornato della fattura."""

    payment_id: str
    invoice_id: str
    amount_paid: Decimal
    balance: Decimal
    status: InvoiceStatus
    paid_date: Optional[datetime.datetime] = None


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    """
    Schema per la creazione di una fattura.

    NON include:
    - invoice_number (generato automaticamente dal service)
    - subtotal/tax/total/balance (calcolati dal service)
    - amount_paid/paid_date/status (gestiti dal registro pagamenti)
    """

    project_id: Optional[str] = Field(None, max_length=36)
    client_id: Optional[str] = Field(None, max_length=36)
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: Optional[EmailStr] = None
    type: InvoiceType = Field(default=InvoiceType.FINAL)
    issue_date: datetime.date = Field(..., description="Data emissione fattura")
    due_date: datetime.date = Field(..., description="Data scadenza pagamento")
    payment_terms: Optional[str] = Field(None, max_length=100)
    tax_rate: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        le=Decimal("100"),
        description="Aliquota in percentuale",
    )
    items: list[InvoiceItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None
    terms: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_dates(self) -> "InvoiceCreate":
        """Valida che due_date >= issue_date."""
        if self.due_date < self.issue_date:
            raise BusinessValidationError(
                "La data di scadenza non può essere precedente alla data di emissione"
            )
        return self


class InvoiceUpdate(BaseModel):
    """
    Schema per l'aggiornamento di una fattura.

    Modifiche a items o tax_rate comportano il ricalcolo di
    totali e saldo prima della scrittura.
    """

    client_name: Optional[str] = Field(None, min_length=1, max_length=255)
    client_email: Optional[EmailStr] = None
    issue_date: Optional[datetime.date] = None
    due_date: Optional[datetime.date] = None
    payment_terms: Optional[str] = Field(None, max_length=100)
    tax_rate: Optional[Decimal] = Field(None, ge=Decimal("0"), le=Decimal("100"))
    items: Optional[list[InvoiceItemCreate]] = Field(None, min_length=1)
    notes: Optional[str] = None
    terms: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("client_name", "issue_date", "due_date", "tax_rate", mode="before")
    @classmethod
    def reject_null(cls, v):
        """I campi obbligatori possono essere omessi ma non impostati a null."""
        if v is None:
            raise ValueError("Il campo non può essere null")
        return v

    @model_validator(mode="after")
    def validate_update(self) -> "InvoiceUpdate":
        """Valida che almeno un campo sia stato modificato."""
        if not self.model_fields_set:
            raise BusinessValidationError("È necessario modificare almeno un campo")
        return self


class InvoiceRead(BaseModel):
    """Schema per la lettura di una fattura."""

    id: str
    user_id: str
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: str
    client_email: Optional[str] = None
    invoice_number: str
    type: InvoiceType
    status: InvoiceStatus
    effective_status: Optional[InvoiceStatus] = None
    issue_date: datetime.date
    due_date: datetime.date
    payment_terms: Optional[str] = None
    tax_rate: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    amount_paid: Decimal
    balance: Decimal
    paid_date: Optional[datetime.datetime] = None
    sent_at: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    items: list[InvoiceItemRead] = Field(default_factory=list)
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceStats(BaseModel):
    """Statistiche di fatturazione di un contractor."""

    total_invoices: int
    total_amount: Decimal
    pending_amount: Decimal
    overdue_amount: Decimal
    paid_this_month: Decimal
    overdue_count: int
    pending_count: int


# Export degli schemas
__all__ = [
    "PaymentMethod",
    "InvoiceStatus",
    "InvoiceType",
    "InvoiceItemCategory",
    "INVOICE_TRANSITIONS",
    "InvoiceItemCreate",
    "InvoiceItemRead",
    "InvoiceTotals",
    "PaymentCreate",
    "PaymentRead",
    "PaymentResult",
    "InvoiceCreate",
    "InvoiceUpdate",
    "InvoiceRead",
    "InvoiceStats",
]
