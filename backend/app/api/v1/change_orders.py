"""
Router FastAPI per gli Ordini di Modifica (Change Order)
Progetto: Contractor Manager (Gestionale Cantieri)

Endpoint lato contractor (autenticati). Gli endpoint pubblici
di risposta del cliente sono in approvals.py.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import CurrentUserId, Notifier
from app.schemas.change_order import (
    ApprovalRequestResult,
    BudgetReconciliationResult,
    ChangeOrderCreate,
    ChangeOrderRead,
    ChangeOrderStatus,
    ChangeOrderUpdate,
    ExpireSweepResult,
)
from app.services.budget_projector import budget_projector
from app.services.change_order_service import ChangeOrderService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanza del service
change_order_service = ChangeOrderService()

# Router con prefix e tag
router = APIRouter(
    prefix="/change-orders",
    tags=["Ordini di Modifica"],
)


# -------------------------------------------------------------------
# Endpoints di manutenzione
# -------------------------------------------------------------------

@router.post(
    "/expire-sweep",
    name="scansione_scadenze",
    summary="Scansione scadenze",
    description="Porta a 'expired' gli ordini in attesa con scadenza superata.",
    response_model=ExpireSweepResult,
    status_code=status.HTTP_200_OK,
)
async def expire_change_orders(
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> ExpireSweepResult:
    """
    Esegue la scansione delle scadenze su richiesta.

    Idempotente: una seconda esecuzione non trova nulla da fare.
    """
    expired_count = await change_order_service.expire_sweep(db=db)
    return ExpireSweepResult(expired_count=expired_count)


@router.post(
    "/reconcile-budget",
    name="riconciliazione_budget",
    summary="Riconciliazione budget",
    description="Riapplica ai progetti il delta degli ordini approvati non ancora proiettati.",
    response_model=BudgetReconciliationResult,
    status_code=status.HTTP_200_OK,
)
async def reconcile_budgets(
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> BudgetReconciliationResult:
    return await budget_projector.reconcile(db=db)


# -------------------------------------------------------------------
# Endpoints CRUD
# -------------------------------------------------------------------

@router.post(
    "",
    name="crea_ordine_modifica",
    summary="Crea ordine di modifica",
    description="Crea un ordine di modifica in attesa con token di approvazione.",
    response_model=ChangeOrderRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_change_order(
    data: ChangeOrderCreate,
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderRead:
    """
    Crea un nuovo ordine di modifica.

    Stato, token, risposta del cliente e scadenza sono impostati dal server:
    se presenti nel body la richiesta viene rifiutata (422).
    """
    change_order = await change_order_service.create(db=db, data=data, user_id=user_id)
    return change_order_service.to_read(change_order)


@router.get(
    "",
    name="ordini_modifica_lista",
    summary="Lista ordini di modifica",
    description="Recupera gli ordini di modifica del contractor, dal più recente.",
    response_model=list[ChangeOrderRead],
    status_code=status.HTTP_200_OK,
)
async def get_change_orders(
    user_id: CurrentUserId,
    status_filter: Optional[ChangeOrderStatus] = Query(
        None,
        alias="status",
        description="Filtro per stato effettivo (pending, approved, declined, expired)",
    ),
    db: AsyncSession = Depends(get_db),
) -> list[ChangeOrderRead]:
    change_orders = await change_order_service.list_for_user(
        db=db,
        user_id=user_id,
        status_filter=status_filter,
    )
    return [change_order_service.to_read(change_order) for change_order in change_orders]


@router.get(
    "/{change_order_id}",
    name="ordine_modifica_dettaglio",
    summary="Dettaglio ordine di modifica",
    description="Recupera un ordine di modifica con URL di approvazione.",
    response_model=ChangeOrderRead,
    status_code=status.HTTP_200_OK,
)
async def get_change_order(
    user_id: CurrentUserId,
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderRead:
    change_order = await change_order_service.get_by_id(
        db=db,
        change_order_id=change_order_id,
        user_id=user_id,
    )
    return change_order_service.to_read(change_order)


@router.patch(
    "/{change_order_id}",
    name="aggiorna_ordine_modifica",
    summary="Aggiorna ordine di modifica",
    description="Modifica un ordine ancora in attesa di risposta.",
    response_model=ChangeOrderRead,
    status_code=status.HTTP_200_OK,
)
async def update_change_order(
    data: ChangeOrderUpdate,
    user_id: CurrentUserId,
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderRead:
    change_order = await change_order_service.update(
        db=db,
        change_order_id=change_order_id,
        data=data,
        user_id=user_id,
    )
    return change_order_service.to_read(change_order)


@router.delete(
    "/{change_order_id}",
    name="elimina_ordine_modifica",
    summary="Elimina ordine di modifica",
    description="Elimina un ordine in attesa, rifiutato o scaduto.",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_change_order(
    user_id: CurrentUserId,
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Elimina un ordine di modifica.

    Gli ordini approvati non sono eliminabili.
    """
    await change_order_service.delete(db=db, change_order_id=change_order_id, user_id=user_id)


@router.post(
    "/{change_order_id}/send",
    name="invia_ordine_modifica",
    summary="Invia richiesta di approvazione",
    description="Invia al cliente l'e-mail con il link di approvazione.",
    response_model=ApprovalRequestResult,
    status_code=status.HTTP_200_OK,
)
async def send_change_order(
    user_id: CurrentUserId,
    notifier: Notifier,
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> ApprovalRequestResult:
    """
    Invia la richiesta di approvazione.

    L'invio è best-effort: in caso di errore 'sent' è False
    e l'URL può essere condiviso manualmente.
    """
    return await change_order_service.send_approval_request(
        db=db,
        change_order_id=change_order_id,
        user_id=user_id,
        notifier=notifier,
    )
