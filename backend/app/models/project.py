"""
Modello SQLAlchemy per i Progetti
Progetto: Contractor Manager (Gestionale Cantieri)

Contiene solo la parte del progetto rilevante per il budget:
estimated_cost viene modificato dalle approvazioni degli ordini di
modifica (in modo additivo) e dalle modifiche dirette del contractor.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import DocumentIDMixin, OwnedMixin, TimestampMixin


class Project(Base, DocumentIDMixin, OwnedMixin, TimestampMixin):
    """
    Modello per i progetti.

    Attributes:
        id: ID opaco del progetto
        user_id: Contractor proprietario
        name: Nome del progetto
        estimated_cost: Costo stimato (budget), aggiornato dalle approvazioni
        actual_cost: Costo effettivo sostenuto
    """

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome del progetto",
    )

    estimated_cost: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Costo stimato del progetto",
    )

    actual_cost: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Costo effettivo del progetto",
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name}, estimated_cost={self.estimated_cost})>"
