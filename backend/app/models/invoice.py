"""
Modelli SQLAlchemy per la Fatturazione
Progetto: Contractor Manager (Gestionale Cantieri)

Contiene:
- Invoice: Fattura principale, con importi e saldo persistiti
- InvoiceItem: Righe della fattura
- Payment: Pagamenti registrati sulla fattura (immutabili)
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import DocumentIDMixin, OwnedMixin, TimestampMixin


class Invoice(Base, DocumentIDMixin, OwnedMixin, TimestampMixin):
    """
    Modello per le fatture.

    A differenza di uno stato calcolato al volo, subtotal/tax/total e
    amount_paid/balance sono persistiti: ogni modifica a righe o aliquota
    li ricalcola prima della scrittura, ogni pagamento aggiorna
    amount_paid e balance nella stessa scrittura.

    Attributes:
        id: ID opaco
        user_id: Contractor proprietario
        project_id: Progetto di riferimento (opzionale)
        invoice_number: Numero progressivo annuale (formato: INV-YYYY-NNNN)
        type: progress | final | change_order | retainer
        status: draft | sent | paid | cancelled (overdue è solo una vista)
        issue_date, due_date: Date di emissione e scadenza
        tax_rate: Aliquota in percentuale
        subtotal: Somma dei totali riga
        tax: subtotal * tax_rate / 100
        total: subtotal + tax
        amount_paid: Somma dei pagamenti applicati (non decrescente)
        balance: max(0, total - amount_paid)
        paid_date: Prima volta in cui il saldo è arrivato a zero
        sent_at: Data/ora di invio al cliente

    Relationships:
        items: Righe della fattura
        payments: Pagamenti registrati
    """

    __tablename__ = "invoices"

    # ------------------------------------------------------------
    # Colonne Relazioni
    # ------------------------------------------------------------
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    client_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    invoice_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        doc="Numero fattura progressivo annuale (formato: INV-YYYY-NNNN)",
    )

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="final",
        doc="Tipo fattura: progress, final, change_order, retainer",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        doc="Stato persistito: draft, sent, paid, cancelled",
    )

    issue_date: Mapped[datetime.date] = mapped_column(
        Date,
        nullable=False,
        doc="Data emissione fattura",
    )

    due_date: Mapped[datetime.date] = mapped_column(
        Date,
        nullable=False,
        doc="Data scadenza pagamento",
    )

    payment_terms: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Aliquota fiscale in percentuale",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Somma dei totali riga",
    )

    tax: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Importo tasse calcolato",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Totale fattura (subtotal + tax)",
    )

    # ------------------------------------------------------------
    # Colonne Pagamento
    # ------------------------------------------------------------
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Somma dei pagamenti registrati",
    )

    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Saldo residuo: max(0, total - amount_paid)",
    )

    paid_date: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora in cui il saldo ha raggiunto zero la prima volta",
    )

    sent_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ------------------------------------------------------------
    # Colonne Note
    # ------------------------------------------------------------
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceItem.position",
        doc="Righe della fattura",
    )

    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        lazy="raise",
        doc="Pagamenti (caricati esplicitamente da InvoiceLedger.list_payments)",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    def status_on(self, today: datetime.date) -> str:
        """
        Stato in lettura: 'overdue' se inviata e scaduta.

        Non modifica lo stato persistito.
        """
        if self.status == "sent" and today > self.due_date:
            return "overdue"
        return self.status

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        Index("ix_invoices_user_status", "user_id", "status"),
        Index("ix_invoices_due_date", "due_date"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'cancelled')",
            name="ck_invoices_status",
        ),
        CheckConstraint("subtotal >= 0", name="ck_invoices_subtotal_positive"),
        CheckConstraint("tax_rate >= 0", name="ck_invoices_tax_rate_positive"),
        CheckConstraint("total >= 0", name="ck_invoices_total_positive"),
        CheckConstraint("amount_paid >= 0", name="ck_invoices_amount_paid_positive"),
        CheckConstraint("balance >= 0", name="ck_invoices_balance_positive"),
    )

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, total={self.total})>"


class InvoiceItem(Base, DocumentIDMixin):
    """
    Modello per le righe della fattura.

    total = quantity * unit_price, calcolato in scrittura.
    """

    __tablename__ = "invoice_items"

    invoice_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="other",
        doc="labor, materials, equipment, subcontractor, other",
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_invoice_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_positive"),
    )


class Payment(Base, DocumentIDMixin, OwnedMixin):
    """
    Pagamento registrato su una fattura.

    Immutabile dopo la creazione: nessuna operazione di modifica
    o cancellazione. Contribuisce per sempre ad amount_paid.
    """

    __tablename__ = "payments"

    invoice_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Importo del pagamento (> 0)",
    )

    payment_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="cash, check, credit_card, bank_transfer, other",
    )

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
