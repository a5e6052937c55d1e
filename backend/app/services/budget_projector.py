"""
Proiezione dei budget di progetto
Progetto: Contractor Manager (Gestionale Cantieri)

Applica al costo stimato del progetto la variazione di un ordine di
modifica approvato. L'aggiornamento è sempre additivo e calcolato dal
database sul valore corrente (estimated_cost = estimated_cost + delta),
così da non sovrascrivere modifiche concorrenti al progetto.

Idempotenza: il marker change_orders.budget_applied_at viene impostato
nella stessa transazione dell'incremento, solo se ancora NULL. Un
secondo tentativo sullo stesso ordine non produce effetti.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.exceptions import ProjectionFailure
from app.models import ChangeOrder, Project
from app.schemas.change_order import BudgetReconciliationResult, ChangeOrderStatus

# Logger per questo modulo
logger = logging.getLogger(__name__)


class ProjectBudgetProjector:
    """
    Service per l'effetto di budget degli ordini di modifica approvati.

    Non conosce il workflow: riceve solo progetto, delta e (opzionale)
    l'ID dell'ordine usato come chiave di idempotenza.
    """

    async def apply_change_order(
        self,
        db: AsyncSession,
        project_id: str,
        change_amount: Decimal,
        change_order_id: Optional[str] = None,
    ) -> bool:
        """
        Somma change_amount al costo stimato corrente del progetto.

        Args:
            db: Sessione database
            project_id: ID del progetto
            change_amount: Variazione (negativa per le detrazioni)
            change_order_id: Ordine di modifica di origine; se indicato,
                l'incremento avviene una sola volta per ordine

        Returns:
            bool: True se il delta è stato applicato, False se era già applicato

        Note:
            Il metodo chiude la transazione della sessione ricevuta. Il
            chiamante non deve avere modifiche in sospeso. In caso di errore
            la sessione viene annullata e gli oggetti caricati scadono: vanno
            riletti in modo asincrono (refresh o nuova query).

        Raises:
            ProjectionFailure: Progetto inesistente o errore di scrittura
        """
        now = utcnow()
        delta = Decimal(change_amount)

        try:
            if change_order_id is not None:
                marked = await db.execute(
                    update(ChangeOrder)
                    .where(
                        ChangeOrder.id == change_order_id,
                        ChangeOrder.budget_applied_at.is_(None),
                    )
                    .values(budget_applied_at=now)
                    .execution_options(synchronize_session=False)
                )
                if marked.rowcount == 0:
                    # Nessuna scrittura: chiude la transazione senza scadere gli oggetti caricati
                    await db.commit()
                    logger.info(
                        f"Budget già applicato per l'ordine di modifica {change_order_id}"
                    )
                    return False

            result = await db.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(
                    estimated_cost=Project.estimated_cost + delta,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise ProjectionFailure(
                    f"Progetto {project_id} non trovato: variazione {delta} non applicata",
                    extra={"project_id": project_id, "change_order_id": change_order_id},
                )

            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise ProjectionFailure(
                f"Aggiornamento budget del progetto {project_id} fallito: {e}",
                extra={"project_id": project_id, "change_order_id": change_order_id},
            ) from e

        logger.info(f"Progetto {project_id}: costo stimato variato di {delta}")
        return True

    async def reconcile(self, db: AsyncSession) -> BudgetReconciliationResult:
        """
        Riapplica il delta per gli ordini approvati senza marker di budget.

        Copre il caso in cui l'approvazione è stata salvata ma la proiezione
        è fallita. Ogni ordine è indipendente: un errore non blocca gli altri.
        """
        stmt = (
            select(ChangeOrder.id, ChangeOrder.project_id, ChangeOrder.change_amount)
            .where(
                ChangeOrder.status == ChangeOrderStatus.APPROVED.value,
                ChangeOrder.budget_applied_at.is_(None),
            )
            .order_by(ChangeOrder.client_response_date.asc())
        )
        result = await db.execute(stmt)
        pending = result.all()

        applied_count = 0
        failed_ids: list[str] = []

        for change_order_id, project_id, change_amount in pending:
            try:
                applied = await self.apply_change_order(
                    db,
                    project_id,
                    change_amount,
                    change_order_id=change_order_id,
                )
            except ProjectionFailure:
                logger.error(
                    f"Riconciliazione budget fallita per l'ordine {change_order_id}",
                    exc_info=True,
                )
                failed_ids.append(change_order_id)
                continue
            if applied:
                applied_count += 1

        if pending:
            logger.info(
                f"Riconciliazione budget: {applied_count} applicati, {len(failed_ids)} falliti"
            )

        return BudgetReconciliationResult(applied_count=applied_count, failed_ids=failed_ids)


# Istanza condivisa
budget_projector = ProjectBudgetProjector()
