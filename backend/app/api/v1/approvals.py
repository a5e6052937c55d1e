"""
Router FastAPI pubblico per la risposta del cliente
Progetto: Contractor Manager (Gestionale Cantieri)

Il token è una capability: chi lo possiede può rispondere per conto
del cliente, senza autenticazione. Tutti gli endpoint sono soggetti
al rate limit per indirizzo client.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import Notifier, enforce_approval_rate_limit
from app.schemas.change_order import (
    ChangeOrderDirectApproval,
    ChangeOrderPublicRead,
    ChangeOrderResponseCreate,
    ChangeOrderResponseResult,
)
from app.services.change_order_service import ChangeOrderService

# Istanza del service
change_order_service = ChangeOrderService()

# Router con prefix e tag
router = APIRouter(
    prefix="/change-orders",
    tags=["Approvazione Cliente"],
    dependencies=[Depends(enforce_approval_rate_limit)],
)


# -------------------------------------------------------------------
# Approvazione tramite token
# -------------------------------------------------------------------

@router.get(
    "/approve/{token}",
    name="ordine_modifica_da_token",
    summary="Visualizza ordine di modifica",
    description="Mostra l'ordine di modifica al titolare del token.",
    response_model=ChangeOrderPublicRead,
    status_code=status.HTTP_200_OK,
)
async def get_change_order_by_token(
    token: str = Path(..., min_length=1, max_length=128, description="Token di approvazione"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderPublicRead:
    change_order = await change_order_service.get_by_token(db=db, token=token)
    return change_order_service.to_public_read(change_order)


@router.post(
    "/approve/{token}",
    name="rispondi_ordine_modifica",
    summary="Rispondi all'ordine di modifica",
    description="Registra l'approvazione o il rifiuto del cliente.",
    response_model=ChangeOrderResponseResult,
    status_code=status.HTTP_200_OK,
)
async def respond_to_change_order(
    data: ChangeOrderResponseCreate,
    notifier: Notifier,
    token: str = Path(..., min_length=1, max_length=128, description="Token di approvazione"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderResponseResult:
    """
    Registra la risposta del cliente.

    Errori:
    - 404: token sconosciuto
    - 410: link scaduto
    - 409: risposta già registrata (extra contiene la risposta precedente)
    """
    return await change_order_service.respond_by_token(
        db=db,
        token=token,
        response=data.response,
        notes=data.notes,
        notifier=notifier,
    )


# -------------------------------------------------------------------
# Approvazione diretta tramite ID
# -------------------------------------------------------------------

@router.get(
    "/approve-simple/{change_order_id}",
    name="ordine_modifica_approvazione_semplice",
    summary="Visualizza ordine per approvazione diretta",
    response_model=ChangeOrderPublicRead,
    status_code=status.HTTP_200_OK,
)
async def get_change_order_for_direct_approval(
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderPublicRead:
    change_order = await change_order_service.get_by_id(db=db, change_order_id=change_order_id)
    return change_order_service.to_public_read(change_order)


@router.post(
    "/approve-simple/{change_order_id}",
    name="approva_ordine_modifica",
    summary="Approvazione diretta",
    description="Approva l'ordine; richiede accept_policies = true.",
    response_model=ChangeOrderResponseResult,
    status_code=status.HTTP_200_OK,
)
async def approve_change_order_directly(
    data: ChangeOrderDirectApproval,
    notifier: Notifier,
    change_order_id: str = Path(..., description="ID dell'ordine di modifica"),
    db: AsyncSession = Depends(get_db),
) -> ChangeOrderResponseResult:
    return await change_order_service.approve_direct(
        db=db,
        change_order_id=change_order_id,
        data=data,
        notifier=notifier,
    )
