"""
Router FastAPI per la Fatturazione
Progetto: Contractor Manager (Gestionale Cantieri)

Definisce gli endpoint API per la gestione delle fatture,
incluse le operazioni CRUD, i pagamenti e le statistiche.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import CurrentUserId
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceRead,
    InvoiceStats,
    InvoiceStatus,
    InvoiceUpdate,
    PaymentCreate,
    PaymentRead,
    PaymentResult,
)
from app.services.invoice_service import InvoiceService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanza del service
invoice_service = InvoiceService()

# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Fatturazione"],
)


# -------------------------------------------------------------------
# Endpoints per Fatture
# -------------------------------------------------------------------

@router.post(
    "",
    name="crea_fattura",
    summary="Crea fattura",
    description="Crea una fattura in stato draft con totali calcolati.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """
    Crea una nuova fattura.

    Numero fattura, subtotale, tasse, totale e saldo sono calcolati dal server.
    """
    invoice = await invoice_service.create(db=db, data=data, user_id=user_id)
    return invoice_service.to_read(invoice)


@router.get(
    "",
    name="fatture_lista",
    summary="Lista fatture",
    description="Recupera le fatture del contractor, con filtro opzionale per stato.",
    response_model=list[InvoiceRead],
    status_code=status.HTTP_200_OK,
)
async def get_invoices(
    user_id: CurrentUserId,
    status_filter: Optional[InvoiceStatus] = Query(
        None,
        alias="status",
        description="Filtro per stato (draft, sent, paid, cancelled, overdue)",
    ),
    db: AsyncSession = Depends(get_db),
) -> list[InvoiceRead]:
    """
    Recupera le fatture del contractor.

    Il filtro 'overdue' restituisce le fatture inviate oltre la scadenza.
    """
    invoices = await invoice_service.list_for_user(
        db=db,
        user_id=user_id,
        status_filter=status_filter,
    )
    return [invoice_service.to_read(invoice) for invoice in invoices]


@router.get(
    "/stats",
    name="fatture_statistiche",
    summary="Statistiche fatturazione",
    description="Totali, importi in attesa, scaduti e incassati nel mese corrente.",
    response_model=InvoiceStats,
    status_code=status.HTTP_200_OK,
)
async def get_invoice_stats(
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceStats:
    return await invoice_service.get_stats(db=db, user_id=user_id)


@router.get(
    "/{invoice_id}",
    name="fattura_dettaglio",
    summary="Dettaglio fattura",
    description="Recupera i dettagli di una fattura.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def get_invoice(
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """
    Recupera i dettagli di una fattura per ID.
    """
    invoice = await invoice_service.get_by_id(db=db, invoice_id=invoice_id, user_id=user_id)
    return invoice_service.to_read(invoice)


@router.patch(
    "/{invoice_id}",
    name="aggiorna_fattura",
    summary="Aggiorna fattura",
    description="Aggiorna righe, aliquota, date o note di una fattura non pagata.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def update_invoice(
    data: InvoiceUpdate,
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """
    Aggiorna una fattura.

    Modifiche a righe o aliquota ricalcolano totali e saldo.
    Le fatture pagate o annullate non sono modificabili.
    """
    invoice = await invoice_service.update(
        db=db,
        invoice_id=invoice_id,
        data=data,
        user_id=user_id,
    )
    return invoice_service.to_read(invoice)


@router.post(
    "/{invoice_id}/send",
    name="invia_fattura",
    summary="Invia fattura",
    description="Segna la fattura come inviata (draft → sent).",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def send_invoice(
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    invoice = await invoice_service.send(db=db, invoice_id=invoice_id, user_id=user_id)
    return invoice_service.to_read(invoice)


@router.post(
    "/{invoice_id}/cancel",
    name="annulla_fattura",
    summary="Annulla fattura",
    description="Annulla una fattura senza pagamenti registrati.",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def cancel_invoice(
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    invoice = await invoice_service.cancel(db=db, invoice_id=invoice_id, user_id=user_id)
    return invoice_service.to_read(invoice)


# -------------------------------------------------------------------
# Endpoints per Pagamenti
# -------------------------------------------------------------------

@router.post(
    "/{invoice_id}/payments",
    name="registra_pagamento",
    summary="Registra pagamento",
    description="Registra un pagamento parziale o totale su una fattura.",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
)
async def add_payment(
    data: PaymentCreate,
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> PaymentResult:
    """
    Registra un pagamento.

    L'importo si somma a quanto già pagato; quando il saldo
    arriva a zero la fattura passa a 'paid'.
    """
    return await invoice_service.add_payment(
        db=db,
        invoice_id=invoice_id,
        data=data,
        user_id=user_id,
    )


@router.get(
    "/{invoice_id}/payments",
    name="pagamenti_fattura",
    summary="Pagamenti fattura",
    description="Recupera i pagamenti registrati su una fattura.",
    response_model=list[PaymentRead],
    status_code=status.HTTP_200_OK,
)
async def get_payments(
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentRead]:
    return await invoice_service.list_payments(db=db, invoice_id=invoice_id, user_id=user_id)


@router.post(
    "/{invoice_id}/mark-paid",
    name="segna_fattura_pagata",
    summary="Segna come pagata",
    description=(
        "Imposta la fattura come interamente pagata. Sovrascrive l'importo pagato "
        "con il totale: non equivale alla registrazione di un pagamento."
    ),
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def mark_invoice_paid(
    user_id: CurrentUserId,
    invoice_id: str = Path(..., description="ID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    invoice = await invoice_service.mark_as_paid(db=db, invoice_id=invoice_id, user_id=user_id)
    return invoice_service.to_read(invoice)
