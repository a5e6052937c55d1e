"""
Schemas Pydantic per il progetto Contractor Manager

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import ChangeOrderRead, InvoiceRead, etc.

from app.schemas.token import TokenPayload
from app.schemas.project import ProjectCreate, ProjectRead
from app.schemas.change_order import (
    CHANGE_ORDER_TRANSITIONS,
    ApprovalRequestResult,
    BudgetReconciliationResult,
    ChangeOrderCreate,
    ChangeOrderDirectApproval,
    ChangeOrderItemCategory,
    ChangeOrderItemCreate,
    ChangeOrderItemRead,
    ChangeOrderItemType,
    ChangeOrderPublicRead,
    ChangeOrderRead,
    ChangeOrderResponseCreate,
    ChangeOrderResponseResult,
    ChangeOrderStatus,
    ChangeOrderUpdate,
    ClientResponse,
    ExpireSweepResult,
    can_transition,
)
from app.schemas.invoice import (
    INVOICE_TRANSITIONS,
    InvoiceCreate,
    InvoiceItemCategory,
    InvoiceItemCreate,
    InvoiceItemRead,
    InvoiceRead,
    InvoiceStats,
    InvoiceStatus,
    InvoiceTotals,
    InvoiceType,
    InvoiceUpdate,
    PaymentCreate,
    PaymentMethod,
    PaymentRead,
    PaymentResult,
)

__all__ = [
    # Token
    "TokenPayload",
    # Project
    "ProjectCreate",
    "ProjectRead",
    # Change Order
    "CHANGE_ORDER_TRANSITIONS",
    "ApprovalRequestResult",
    "BudgetReconciliationResult",
    "ChangeOrderCreate",
    "ChangeOrderDirectApproval",
    "ChangeOrderItemCategory",
    "ChangeOrderItemCreate",
    "ChangeOrderItemRead",
    "ChangeOrderItemType",
    "ChangeOrderPublicRead",
    "ChangeOrderRead",
    "ChangeOrderResponseCreate",
    "ChangeOrderResponseResult",
    "ChangeOrderStatus",
    "ChangeOrderUpdate",
    "ClientResponse",
    "ExpireSweepResult",
    "can_transition",
    # Invoice
    "INVOICE_TRANSITIONS",
    "InvoiceCreate",
    "InvoiceItemCategory",
    "InvoiceItemCreate",
    "InvoiceItemRead",
    "InvoiceRead",
    "InvoiceStats",
    "InvoiceStatus",
    "InvoiceTotals",
    "InvoiceType",
    "InvoiceUpdate",
    "PaymentCreate",
    "PaymentMethod",
    "PaymentRead",
    "PaymentResult",
]
