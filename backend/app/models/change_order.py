"""
Modelli SQLAlchemy per gli Ordini di Modifica (Change Order)
Progetto: Contractor Manager (Gestionale Cantieri)

Contiene:
- ChangeOrder: Ordine di modifica con token di approvazione esterno
- ChangeOrderItem: Voci dell'ordine di modifica
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import ensure_utc
from app.models import Base
from app.models.mixins import DocumentIDMixin, OwnedMixin, TimestampMixin


class ChangeOrder(Base, DocumentIDMixin, OwnedMixin, TimestampMixin):
    """
    Modello per gli ordini di modifica.

    Un ordine di modifica nasce in stato 'pending' con un token di
    approvazione casuale; il cliente risponde una sola volta tramite
    il link che contiene il token.

    Attributes:
        id: ID opaco
        user_id: Contractor proprietario
        project_id: Progetto a cui si applica la modifica
        change_order_number: Numero leggibile (CO-YYYYMMDD-NNN)
        title, description, reason, impact_on_schedule: Descrizione della modifica
        original_amount: Importo originale del contratto
        change_amount: Variazione (negativa per le detrazioni)
        new_total_amount: original_amount + change_amount, fissato alla creazione
        status: pending | approved | declined | expired
        approval_token: Credenziale bearer per rispondere (unica)
        client_response: approved | declined | None, impostata una sola volta
        client_response_date: Data/ora della risposta
        client_response_notes: Note del cliente
        expires_at: Scadenza del link, immutabile
        budget_applied_at: Data/ora in cui il delta è stato applicato al progetto

    Relationships:
        items: Voci dell'ordine, in ordine di posizione
    """

    __tablename__ = "change_orders"

    # ------------------------------------------------------------
    # Colonne Relazioni
    # ------------------------------------------------------------
    project_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
        doc="ID del progetto (riferimento, non posseduto)",
    )

    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contractor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    change_order_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        doc="Numero leggibile (CO-YYYYMMDD-NNN), non garantito univoco",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    impact_on_schedule: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    original_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Importo originale del contratto",
    )

    change_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Variazione dell'importo (può essere negativa)",
    )

    new_total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="original_amount + change_amount al momento della redazione",
    )

    # ------------------------------------------------------------
    # Colonne Workflow di Approvazione
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        doc="Stato: pending, approved, declined, expired",
    )

    approval_token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        doc="Token bearer per la risposta del cliente",
    )

    client_response: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        doc="Risposta del cliente: approved, declined",
    )

    client_response_date: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    client_response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Scadenza del link di approvazione (immutabile)",
    )

    budget_applied_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Applicazione del delta al budget di progetto (None = non ancora)",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    items: Mapped[List["ChangeOrderItem"]] = relationship(
        "ChangeOrderItem",
        back_populates="change_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ChangeOrderItem.position",
        doc="Voci dell'ordine di modifica",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    def is_expired_at(self, now: datetime.datetime) -> bool:
        """True se la scadenza è passata, indipendentemente dallo stato salvato."""
        return now > ensure_utc(self.expires_at)

    def effective_status(self, now: datetime.datetime) -> str:
        """
        Stato in lettura: un ordine pending con scadenza passata è 'expired'
        anche se la scansione non l'ha ancora marcato.
        """
        if self.status == "pending" and self.is_expired_at(now):
            return "expired"
        return self.status

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        # Indice per la scansione delle scadenze
        Index("ix_change_orders_status_expires_at", "status", "expires_at"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'declined', 'expired')",
            name="ck_change_orders_status",
        ),
        CheckConstraint(
            "client_response IS NULL OR client_response IN ('approved', 'declined')",
            name="ck_change_orders_client_response",
        ),
        CheckConstraint("original_amount >= 0", name="ck_change_orders_original_amount_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChangeOrder(id={self.id}, number={self.change_order_number}, "
            f"status={self.status})>"
        )


class ChangeOrderItem(Base, DocumentIDMixin):
    """
    Voce di un ordine di modifica.

    total = quantity * unit_price, calcolato in scrittura.
    """

    __tablename__ = "change_order_items"

    change_order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("change_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Posizione della voce nell'ordine (da 1)",
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="addition",
        doc="addition, deletion, modification",
    )

    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="other",
        doc="materials, equipment, labor, permits, other",
    )

    change_order: Mapped["ChangeOrder"] = relationship(
        "ChangeOrder",
        back_populates="items",
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_change_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_change_order_items_unit_price_positive"),
    )
