"""
Service Layer per gli Ordini di Modifica (Change Order)
Progetto: Contractor Manager (Gestionale Cantieri)

Gestisce la macchina a stati dell'ordine di modifica:

    pending --(risposta "approved" prima della scadenza)--> approved
    pending --(risposta "declined" prima della scadenza)--> declined
    pending --(scadenza superata: scansione o controllo in lettura)--> expired

approved, declined ed expired sono stati finali.

La risposta del cliente viene scritta con un UPDATE condizionale
(client_response IS NULL AND status = 'pending'), quindi due risposte
concorrenti non possono sovrascriversi. Solo dopo il commit della
risposta viene invocata la proiezione di budget, e infine la notifica.
Gli errori di questi due effetti collaterali vengono loggati e non
annullano l'approvazione.
"""

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc, utcnow
from app.core.config import settings
from app.core.exceptions import (
    AlreadyRespondedError,
    AuthorizationError,
    BusinessValidationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    NotificationFailure,
    ProjectionFailure,
)
from app.models import ChangeOrder, ChangeOrderItem, Project
from app.schemas.change_order import (
    ApprovalRequestResult,
    ChangeOrderCreate,
    ChangeOrderDirectApproval,
    ChangeOrderItemCreate,
    ChangeOrderItemType,
    ChangeOrderPublicRead,
    ChangeOrderRead,
    ChangeOrderResponseResult,
    ChangeOrderStatus,
    ChangeOrderUpdate,
    ClientResponse,
    can_transition,
)
from app.services.approval_token_service import ApprovalTokenIssuer, approval_token_issuer
from app.services.budget_projector import ProjectBudgetProjector, budget_projector
from app.services.notification_service import NotificationPort, get_notification_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Tentativi di generazione del token in caso di collisione sul vincolo unique
TOKEN_GENERATION_ATTEMPTS = 3

# Stati da cui è consentita l'eliminazione
DELETABLE_STATUSES = {
    ChangeOrderStatus.PENDING.value,
    ChangeOrderStatus.DECLINED.value,
    ChangeOrderStatus.EXPIRED.value,
}


def _quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class ChangeOrderService:
    """
    Service per la gestione degli ordini di modifica.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione con token di approvazione e scadenza fissa
    - Risposta del cliente tramite token (una sola volta)
    - Approvazione diretta con accettazione delle condizioni
    - Scansione delle scadenze (idempotente)
    - Proiezione sul budget del progetto dopo l'approvazione
    """

    def __init__(
        self,
        token_issuer: Optional[ApprovalTokenIssuer] = None,
        projector: Optional[ProjectBudgetProjector] = None,
    ):
        self.token_issuer = token_issuer or approval_token_issuer
        self.projector = projector or budget_projector

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    @staticmethod
    def _generate_change_order_number(now: datetime) -> str:
        """Numero leggibile CO-YYYYMMDD-NNN; non garantito univoco."""
        return f"CO-{now:%Y%m%d}-{secrets.randbelow(1000):03d}"

    @staticmethod
    def _build_items(items: list[ChangeOrderItemCreate]) -> list[ChangeOrderItem]:
        return [
            ChangeOrderItem(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total=_quantize(item.quantity * item.unit_price),
                type=item.type.value,
                category=item.category.value,
            )
            for position, item in enumerate(items, start=1)
        ]

    @staticmethod
    def _items_change_amount(items: list[ChangeOrderItem]) -> Decimal:
        """Somma dei totali voce; le detrazioni valgono con segno negativo."""
        amount = Decimal("0")
        for item in items:
            if item.type == ChangeOrderItemType.DELETION.value:
                amount -= Decimal(item.total)
            else:
                amount += Decimal(item.total)
        return _quantize(amount)

    @staticmethod
    def _check_owner(change_order: ChangeOrder, user_id: Optional[str]) -> None:
        if user_id is not None and change_order.user_id != user_id:
            logger.warning(
                f"Accesso negato all'ordine di modifica {change_order.id} per l'utente {user_id}"
            )
            raise AuthorizationError("L'ordine di modifica appartiene a un altro contractor")

    def generate_approval_url(self, token: str) -> str:
        """URL pubblico di approvazione per il token."""
        return self.token_issuer.generate_approval_url(token)

    def to_read(self, change_order: ChangeOrder, now: Optional[datetime] = None) -> ChangeOrderRead:
        """Vista contractor con stato effettivo e URL di approvazione."""
        now = now or utcnow()
        effective = change_order.effective_status(now)
        read = ChangeOrderRead.model_validate(change_order)
        return read.model_copy(
            update={
                "status": ChangeOrderStatus(effective),
                "is_expired": effective == ChangeOrderStatus.EXPIRED.value,
                "expires_at": ensure_utc(change_order.expires_at),
                "approval_url": self.generate_approval_url(change_order.approval_token),
                "simple_approval_url": self.token_issuer.simple_approval_url(change_order.id),
            }
        )

    def to_public_read(
        self,
        change_order: ChangeOrder,
        now: Optional[datetime] = None,
    ) -> ChangeOrderPublicRead:
        """Vista per il titolare del token, senza dati riservati."""
        now = now or utcnow()
        effective = change_order.effective_status(now)
        read = ChangeOrderPublicRead.model_validate(change_order)
        return read.model_copy(
            update={
                "status": ChangeOrderStatus(effective),
                "is_expired": effective == ChangeOrderStatus.EXPIRED.value,
                "expires_at": ensure_utc(change_order.expires_at),
            }
        )

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create(
        self,
        db: AsyncSession,
        data: ChangeOrderCreate,
        user_id: str,
    ) -> ChangeOrder:
        """
        Crea un nuovo ordine di modifica in stato 'pending'.

        Steps:
        1. Verifica che il progetto esista e appartenga al contractor
        2. Calcola i totali voce e, se assente, change_amount
        3. Usa il costo stimato del progetto se original_amount è assente
        4. Genera token, numero e scadenza (now + horizon)
        5. Salva, rigenerando il token in caso di collisione

        Args:
            db: Sessione database
            data: Dati dell'ordine (status/token/risposta non ammessi)
            user_id: Contractor proprietario

        Returns:
            ChangeOrder: L'ordine creato

        Raises:
            NotFoundError: Progetto non trovato
            AuthorizationError: Progetto di un altro contractor
            BusinessValidationError: Importi non validi
            ConflictError: Impossibile generare un token univoco
        """
        # Step 1: Verifica progetto
        result = await db.execute(select(Project).where(Project.id == data.project_id))
        project = result.scalar_one_or_none()

        if not project:
            raise NotFoundError(f"Progetto {data.project_id} non trovato")

        if project.user_id != user_id:
            raise AuthorizationError("Il progetto appartiene a un altro contractor")

        # Step 2-3: Importi
        original_amount = _quantize(
            data.original_amount if data.original_amount is not None else project.estimated_cost
        )
        if original_amount < 0:
            raise BusinessValidationError("L'importo originale non può essere negativo")

        preview_items = self._build_items(data.items)
        if data.change_amount is not None:
            change_amount = _quantize(data.change_amount)
        else:
            change_amount = self._items_change_amount(preview_items)

        new_total_amount = original_amount + change_amount

        # Step 4-5: Token, numero, scadenza e salvataggio
        # Il rollback di un tentativo fallito fa scadere project: valori letti una volta
        project_id = project.id
        project_name = data.project_name or project.name
        now = utcnow()
        expires_at = now + timedelta(days=settings.change_order_expiration_days)

        for attempt in range(1, TOKEN_GENERATION_ATTEMPTS + 1):
            change_order = ChangeOrder(
                user_id=user_id,
                project_id=project_id,
                project_name=project_name,
                client_id=data.client_id,
                client_name=data.client_name,
                client_email=data.client_email,
                contractor_email=data.contractor_email,
                change_order_number=self._generate_change_order_number(now),
                title=data.title,
                description=data.description,
                reason=data.reason,
                impact_on_schedule=data.impact_on_schedule,
                original_amount=original_amount,
                change_amount=change_amount,
                new_total_amount=new_total_amount,
                status=ChangeOrderStatus.PENDING.value,
                approval_token=self.token_issuer.generate_token(),
                expires_at=expires_at,
            )
            change_order.items = self._build_items(data.items)
            db.add(change_order)

            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning(
                    f"Collisione nella creazione dell'ordine di modifica "
                    f"(tentativo {attempt}/{TOKEN_GENERATION_ATTEMPTS}): {e}"
                )
                continue

            logger.info(
                f"Ordine di modifica {change_order.change_order_number} creato "
                f"(id={change_order.id}, progetto={project_id}, variazione={change_amount})"
            )
            return await self.get_by_id(db, change_order.id)

        raise ConflictError("Impossibile generare un token di approvazione univoco")

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------

    async def get_by_id(
        self,
        db: AsyncSession,
        change_order_id: str,
        user_id: Optional[str] = None,
    ) -> ChangeOrder:
        """
        Recupera un ordine di modifica per ID.

        Se user_id è indicato verifica anche la proprietà.

        Raises:
            NotFoundError: Ordine non trovato
            AuthorizationError: Ordine di un altro contractor
        """
        result = await db.execute(select(ChangeOrder).where(ChangeOrder.id == change_order_id))
        change_order = result.scalar_one_or_none()

        if not change_order:
            raise NotFoundError(f"Ordine di modifica {change_order_id} non trovato")

        self._check_owner(change_order, user_id)
        return change_order

    async def get_by_token(self, db: AsyncSession, token: str) -> ChangeOrder:
        """
        Recupera un ordine di modifica tramite token di approvazione.

        Raises:
            NotFoundError: Nessun ordine con questo token
        """
        if not token:
            raise NotFoundError("Link di approvazione non valido")

        result = await db.execute(select(ChangeOrder).where(ChangeOrder.approval_token == token))
        change_order = result.scalar_one_or_none()

        if not change_order or not self.token_issuer.tokens_match(change_order.approval_token, token):
            raise NotFoundError("Link di approvazione non valido")

        return change_order

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        status_filter: Optional[ChangeOrderStatus] = None,
        now: Optional[datetime] = None,
    ) -> list[ChangeOrder]:
        """
        Ordini di modifica del contractor, dal più recente.

        Il filtro usa lo stato effettivo: un ordine pending scaduto
        compare tra gli 'expired' anche prima della scansione.
        """
        now = now or utcnow()
        stmt = select(ChangeOrder).where(ChangeOrder.user_id == user_id)

        if status_filter == ChangeOrderStatus.PENDING:
            stmt = stmt.where(
                ChangeOrder.status == ChangeOrderStatus.PENDING.value,
                ChangeOrder.expires_at >= now,
            )
        elif status_filter == ChangeOrderStatus.EXPIRED:
            stmt = stmt.where(
                or_(
                    ChangeOrder.status == ChangeOrderStatus.EXPIRED.value,
                    and_(
                        ChangeOrder.status == ChangeOrderStatus.PENDING.value,
                        ChangeOrder.expires_at < now,
                    ),
                )
            )
        elif status_filter is not None:
            stmt = stmt.where(ChangeOrder.status == status_filter.value)

        stmt = stmt.order_by(ChangeOrder.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_pending(
        self,
        db: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> list[ChangeOrder]:
        """Ordini ancora in attesa di risposta e non scaduti."""
        return await self.list_for_user(db, user_id, ChangeOrderStatus.PENDING, now=now)

    # ------------------------------------------------------------
    # Modifica ed eliminazione
    # ------------------------------------------------------------

    async def update(
        self,
        db: AsyncSession,
        change_order_id: str,
        data: ChangeOrderUpdate,
        user_id: str,
    ) -> ChangeOrder:
        """
        Modifica un ordine ancora 'pending'.

        Se cambiano le voci e change_amount non è indicato, la variazione
        viene ricalcolata dalle voci; new_total_amount segue sempre.

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: Ordine non più in attesa (risposto o scaduto)
        """
        change_order = await self.get_by_id(db, change_order_id, user_id)

        if change_order.effective_status(utcnow()) != ChangeOrderStatus.PENDING.value:
            raise ConflictError(
                f"Solo gli ordini in attesa possono essere modificati. "
                f"Stato attuale: {change_order.effective_status(utcnow())}"
            )

        update_data = data.model_dump(exclude_unset=True, exclude={"items"})
        for field, value in update_data.items():
            setattr(change_order, field, value)

        if data.items is not None:
            change_order.items = self._build_items(data.items)
            if data.change_amount is None:
                change_order.change_amount = self._items_change_amount(change_order.items)

        change_order.original_amount = _quantize(change_order.original_amount)
        change_order.change_amount = _quantize(change_order.change_amount)
        change_order.new_total_amount = change_order.original_amount + change_order.change_amount

        await db.commit()
        logger.info(f"Ordine di modifica {change_order.id} aggiornato")

        return await self.get_by_id(db, change_order.id)

    async def delete(
        self,
        db: AsyncSession,
        change_order_id: str,
        user_id: str,
    ) -> None:
        """
        Elimina un ordine di modifica.

        Gli ordini approvati non si eliminano: il loro effetto
        sul budget del progetto è già stato applicato.

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: Ordine approvato
        """
        change_order = await self.get_by_id(db, change_order_id, user_id)

        if change_order.status not in DELETABLE_STATUSES:
            raise ConflictError(
                f"Impossibile eliminare un ordine di modifica in stato '{change_order.status}'"
            )

        await db.delete(change_order)
        await db.commit()
        logger.info(f"Ordine di modifica {change_order_id} eliminato")

    # ------------------------------------------------------------
    # Risposta del cliente
    # ------------------------------------------------------------

    async def respond_by_token(
        self,
        db: AsyncSession,
        token: str,
        response: ClientResponse,
        notes: Optional[str] = None,
        notifier: Optional[NotificationPort] = None,
    ) -> ChangeOrderResponseResult:
        """
        Registra la risposta del cliente tramite token.

        Controlli, nell'ordine:
        1. Token esistente (NotFoundError)
        2. Scadenza non superata, anche senza scansione (ExpiredError)
        3. Nessuna risposta precedente (AlreadyRespondedError)

        Args:
            db: Sessione database
            token: Token di approvazione
            response: approved o declined
            notes: Note del cliente
            notifier: Adapter di notifica (default: quello configurato)

        Returns:
            ChangeOrderResponseResult: Esito con stato e marker di budget
        """
        change_order = await self.get_by_token(db, token)
        return await self._record_response(db, change_order, response, notes, notifier)

    async def approve_direct(
        self,
        db: AsyncSession,
        change_order_id: str,
        data: ChangeOrderDirectApproval,
        notifier: Optional[NotificationPort] = None,
    ) -> ChangeOrderResponseResult:
        """
        Approvazione diretta tramite ID, con gli stessi vincoli della risposta
        via token. Richiede l'accettazione esplicita delle condizioni.

        Raises:
            BusinessValidationError: Condizioni non accettate
            NotFoundError, ExpiredError, AlreadyRespondedError
        """
        if not data.accept_policies:
            raise BusinessValidationError(
                "È necessario accettare le condizioni per approvare l'ordine di modifica"
            )

        change_order = await self.get_by_id(db, change_order_id)
        return await self._record_response(
            db, change_order, ClientResponse.APPROVED, data.notes, notifier
        )

    async def _record_response(
        self,
        db: AsyncSession,
        change_order: ChangeOrder,
        response: ClientResponse,
        notes: Optional[str],
        notifier: Optional[NotificationPort],
    ) -> ChangeOrderResponseResult:
        now = utcnow()

        # Step 1: Scadenza, valutata su expires_at e non solo sullo stato
        if change_order.is_expired_at(now):
            logger.warning(
                f"Risposta rifiutata: ordine di modifica {change_order.id} scaduto"
            )
            raise ExpiredError(extra={"expires_at": ensure_utc(change_order.expires_at).isoformat()})

        # Step 2: Risposta già registrata
        if change_order.client_response is not None:
            self._raise_already_responded(change_order)

        target = ChangeOrderStatus(response.value)
        if not can_transition(ChangeOrderStatus(change_order.status), target):
            # Scaduto dalla scansione senza risposta
            raise ExpiredError()

        # Step 3: Scrittura condizionale della risposta
        result = await db.execute(
            update(ChangeOrder)
            .where(
                ChangeOrder.id == change_order.id,
                ChangeOrder.client_response.is_(None),
                ChangeOrder.status == ChangeOrderStatus.PENDING.value,
            )
            .values(
                status=target.value,
                client_response=response.value,
                client_response_date=now,
                client_response_notes=notes,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            # Un'altra richiesta ha risposto o la scansione è passata nel frattempo
            await db.rollback()
            await db.refresh(change_order)
            if change_order.client_response is not None:
                self._raise_already_responded(change_order)
            raise ExpiredError()

        await db.commit()
        await db.refresh(change_order)

        logger.info(
            f"Ordine di modifica {change_order.change_order_number} "
            f"(id={change_order.id}) -> {target.value}"
        )

        # Step 4: Proiezione sul budget, solo per le approvazioni
        if target == ChangeOrderStatus.APPROVED:
            try:
                await self.projector.apply_change_order(
                    db,
                    change_order.project_id,
                    change_order.change_amount,
                    change_order_id=change_order.id,
                )
            except ProjectionFailure:
                logger.error(
                    f"Budget non aggiornato per l'ordine approvato {change_order.id}; "
                    f"sarà riapplicato dalla riconciliazione",
                    exc_info=True,
                )
            await db.refresh(change_order)

        # Step 5: Notifica best-effort
        await self._notify_response(change_order, target.value, notifier)

        return ChangeOrderResponseResult(
            id=change_order.id,
            change_order_number=change_order.change_order_number,
            status=ChangeOrderStatus(change_order.status),
            client_response=ClientResponse(change_order.client_response),
            client_response_date=ensure_utc(change_order.client_response_date),
            budget_applied=change_order.budget_applied_at is not None,
        )

    @staticmethod
    def _raise_already_responded(change_order: ChangeOrder) -> None:
        logger.warning(
            f"Risposta duplicata per l'ordine di modifica {change_order.id} "
            f"(già {change_order.client_response})"
        )
        response_date = ensure_utc(change_order.client_response_date)
        raise AlreadyRespondedError(
            extra={
                "client_response": change_order.client_response,
                "client_response_date": response_date.isoformat() if response_date else None,
            }
        )

    async def _notify_response(
        self,
        change_order: ChangeOrder,
        response: str,
        notifier: Optional[NotificationPort],
    ) -> None:
        notifier = notifier or get_notification_service()
        contractor_email = change_order.contractor_email or settings.contractor_fallback_email
        try:
            await notifier.send_response_confirmation(change_order, response, contractor_email)
        except Exception:
            logger.error(
                f"Notifica di risposta non inviata per l'ordine {change_order.id}",
                exc_info=True,
            )

    # ------------------------------------------------------------
    # Richiesta di approvazione
    # ------------------------------------------------------------

    async def send_approval_request(
        self,
        db: AsyncSession,
        change_order_id: str,
        user_id: str,
        notifier: Optional[NotificationPort] = None,
    ) -> ApprovalRequestResult:
        """
        Invia al cliente il link di approvazione (best-effort).

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: Ordine non più in attesa
        """
        change_order = await self.get_by_id(db, change_order_id, user_id)

        if change_order.effective_status(utcnow()) != ChangeOrderStatus.PENDING.value:
            raise ConflictError("Solo gli ordini in attesa possono essere inviati al cliente")

        approval_url = self.generate_approval_url(change_order.approval_token)
        notifier = notifier or get_notification_service()

        try:
            await notifier.send_approval_request(change_order, approval_url)
        except NotificationFailure as e:
            logger.warning(f"Richiesta di approvazione non inviata: {e.detail}")
            return ApprovalRequestResult(sent=False, approval_url=approval_url)

        return ApprovalRequestResult(sent=True, approval_url=approval_url)

    # ------------------------------------------------------------
    # Scadenze
    # ------------------------------------------------------------

    async def expire_sweep(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Porta a 'expired' tutti gli ordini pending con scadenza passata.

        Idempotente: tocca solo righe ancora 'pending', quindi una
        seconda esecuzione non trova nulla da fare.

        Returns:
            int: Numero di ordini scaduti in questa esecuzione
        """
        now = now or utcnow()
        result = await db.execute(
            update(ChangeOrder)
            .where(
                ChangeOrder.status == ChangeOrderStatus.PENDING.value,
                ChangeOrder.expires_at < now,
            )
            .values(status=ChangeOrderStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        expired_count = result.rowcount or 0
        if expired_count:
            logger.info(f"Scansione scadenze: {expired_count} ordini di modifica scaduti")
        return expired_count


# Istanza condivisa
change_order_service = ChangeOrderService()
