"""
Modelli Database SQLAlchemy
Progetto: Contractor Manager (Gestionale Cantieri)

Import centralizzato di tutti i modelli per create_all e usage generico.

Modelli:
- Project: Progetto (solo la parte di budget)
- ChangeOrder: Ordini di modifica con approvazione del cliente
- ChangeOrderItem: Voci dell'ordine di modifica
- Invoice: Fatture
- InvoiceItem: Righe fattura
- Payment: Pagamenti registrati su una fattura
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.project import Project
from app.models.change_order import ChangeOrder, ChangeOrderItem
from app.models.invoice import Invoice, InvoiceItem, Payment

__all__ = [
    "Base",
    "Project",
    "ChangeOrder",
    "ChangeOrderItem",
    "Invoice",
    "InvoiceItem",
    "Payment",
]
