"""
Mixin SQLAlchemy per modelli
Progetto: Contractor Manager (Gestionale Cantieri)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli.
"""

import datetime
import uuid

from sqlalchemy import DateTime, String
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func

from app.core.clock import utcnow


def new_document_id() -> str:
    """Genera un ID opaco per un nuovo record."""
    return str(uuid.uuid4())


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    Aggiunge i campi:
    - created_at: data/ora di creazione record (impostato automaticamente)
    - updated_at: data/ora ultimo aggiornamento (aggiornato automaticamente)

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


class DocumentIDMixin:
    """
    Mixin per ID opaco di tipo stringa generato lato applicazione.

    Gli ID non hanno significato: i riferimenti tra record
    (project_id, invoice_id, ...) sono semplici stringhe.

    Usage:
        class MyModel(Base, DocumentIDMixin):
            __tablename__ = "my_table"
            ...
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_document_id,
        doc="ID opaco del record",
    )


class OwnedMixin:
    """Mixin per record di proprietà di un contractor (user_id)."""

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        doc="ID del contractor proprietario del record",
    )


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def update_timestamp(session: Session, flush_context, instances) -> None:
    """
    Event listener per aggiornare automaticamente il campo updated_at.

    Questo listener viene eseguito prima di ogni flush e aggiorna il campo
    updated_at di tutti gli oggetti modificati (dirty) e nuovi (new).
    Gli UPDATE bulk (es. scansione scadenze) impostano updated_at da soli.
    """
    now = utcnow()

    for obj in session.dirty:
        if hasattr(obj, "updated_at"):
            if session.is_modified(obj, include_collections=False):
                obj.updated_at = now

    for obj in session.new:
        if hasattr(obj, "updated_at"):
            obj.updated_at = now
