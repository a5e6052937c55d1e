"""
Service Layer per i Progetti
Progetto: Contractor Manager (Gestionale Cantieri)

Solo creazione e lettura: il costo stimato cambia tramite
ProjectBudgetProjector quando un ordine di modifica viene approvato.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthorizationError, NotFoundError
from app.models import Project
from app.schemas.project import ProjectCreate

logger = logging.getLogger(__name__)


class ProjectService:
    """Service per la gestione dei progetti."""

    async def create(self, db: AsyncSession, data: ProjectCreate, user_id: str) -> Project:
        """Crea un nuovo progetto per il contractor."""
        project = Project(
            user_id=user_id,
            name=data.name,
            estimated_cost=data.estimated_cost,
            actual_cost=data.actual_cost,
        )
        db.add(project)
        await db.commit()
        await db.refresh(project)

        logger.info(f"Progetto {project.id} creato (costo stimato {project.estimated_cost})")
        return project

    async def get_by_id(
        self,
        db: AsyncSession,
        project_id: str,
        user_id: Optional[str] = None,
    ) -> Project:
        """
        Recupera un progetto per ID.

        Ricarica sempre i valori dal database: estimated_cost viene
        modificato con UPDATE lato server dalla proiezione di budget.

        Raises:
            NotFoundError: Progetto non trovato
            AuthorizationError: Progetto di un altro contractor
        """
        result = await db.execute(
            select(Project)
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        project = result.scalar_one_or_none()

        if not project:
            raise NotFoundError(f"Progetto {project_id} non trovato")

        if user_id is not None and project.user_id != user_id:
            raise AuthorizationError("Il progetto appartiene a un altro contractor")

        return project


# Istanza condivisa
project_service = ProjectService()
