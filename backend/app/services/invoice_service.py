"""
Service Layer per la Fatturazione
Progetto: Contractor Manager (Gestionale Cantieri)

Registro delle fatture e dei pagamenti:
- subtotal/tax/total calcolati in scrittura e persistiti
- balance = max(0, total - amount_paid), mai salvato non aggiornato
- passaggio automatico a 'paid' quando il saldo arriva a zero
- 'overdue' solo come vista in lettura (sent e scaduta)

add_payment e mark_as_paid NON sono intercambiabili: il primo somma
l'importo ai pagamenti già registrati, il secondo sovrascrive
amount_paid con il totale della fattura.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc, utcnow
from app.core.exceptions import (
    AuthorizationError,
    BusinessValidationError,
    ConflictError,
    NotFoundError,
)
from app.models import Invoice, InvoiceItem, Payment
from app.schemas.invoice import (
    INVOICE_TRANSITIONS,
    InvoiceCreate,
    InvoiceItemCreate,
    InvoiceRead,
    InvoiceStats,
    InvoiceStatus,
    InvoiceTotals,
    InvoiceUpdate,
    PaymentCreate,
    PaymentResult,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class InvoiceService:
    """
    Service per la gestione delle fatture e dei pagamenti.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione con numerazione progressiva annuale
    - Ricalcolo totali ad ogni modifica di righe o aliquota
    - Pagamenti parziali con saldo e stato derivati
    - Scorciatoia "segna come pagata"
    - Statistiche di fatturazione
    """

    # ------------------------------------------------------------
    # Calcoli puri
    # ------------------------------------------------------------

    @staticmethod
    def recompute_totals(items: Iterable, tax_rate: Decimal) -> InvoiceTotals:
        """
        Calcola subtotal, tax e total.

        subtotal = somma dei totali riga
        tax = subtotal * tax_rate / 100
        total = subtotal + tax

        Args:
            items: Righe con attributo total
            tax_rate: Aliquota in percentuale

        Returns:
            InvoiceTotals: Totali arrotondati al centesimo
        """
        subtotal = _quantize(sum((Decimal(item.total) for item in items), Decimal("0")))
        tax = _quantize(subtotal * Decimal(tax_rate) / Decimal("100"))
        return InvoiceTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)

    @staticmethod
    def compute_balance(total: Decimal, amount_paid: Decimal) -> Decimal:
        """Saldo residuo, mai negativo."""
        return max(ZERO, _quantize(Decimal(total) - Decimal(amount_paid)))

    @staticmethod
    def effective_status(invoice: Invoice, today: Optional[date] = None) -> InvoiceStatus:
        """Stato in lettura: 'overdue' per le fatture inviate oltre la scadenza."""
        return InvoiceStatus(invoice.status_on(today or date.today()))

    def to_read(self, invoice: Invoice, today: Optional[date] = None) -> InvoiceRead:
        """Vista della fattura con stato effettivo."""
        read = InvoiceRead.model_validate(invoice)
        return read.model_copy(
            update={
                "effective_status": self.effective_status(invoice, today),
                "paid_date": ensure_utc(invoice.paid_date),
                "sent_at": ensure_utc(invoice.sent_at),
            }
        )

    @staticmethod
    def _build_items(items: list[InvoiceItemCreate]) -> list[InvoiceItem]:
        return [
            InvoiceItem(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total=_quantize(item.quantity * item.unit_price),
                category=item.category.value,
            )
            for position, item in enumerate(items, start=1)
        ]

    def _apply_balance(self, invoice: Invoice, now: datetime) -> None:
        """
        Aggiorna balance, e se il saldo è zero anche status e paid_date.

        Una fattura senza pagamenti non diventa 'paid' solo perché il
        totale è zero. paid_date viene impostata solo la prima volta.
        """
        invoice.balance = self.compute_balance(invoice.total, invoice.amount_paid)
        if (
            invoice.balance <= ZERO
            and invoice.amount_paid > ZERO
            and invoice.status != InvoiceStatus.CANCELLED.value
        ):
            invoice.status = InvoiceStatus.PAID.value
            if invoice.paid_date is None:
                invoice.paid_date = now

    @staticmethod
    def _check_owner(invoice: Invoice, user_id: Optional[str]) -> None:
        if user_id is not None and invoice.user_id != user_id:
            logger.warning(f"Accesso negato alla fattura {invoice.id} per l'utente {user_id}")
            raise AuthorizationError("La fattura appartiene a un altro contractor")

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create(
        self,
        db: AsyncSession,
        data: InvoiceCreate,
        user_id: str,
    ) -> Invoice:
        """
        Crea una fattura in stato 'draft'.

        Steps:
        1. Calcola i totali riga
        2. Calcola subtotal, tax, total
        3. Genera invoice_number progressivo annuale
        4. Salva con amount_paid = 0 e balance = total

        Raises:
            ConflictError: errore di integrità (numero fattura duplicato)
        """
        items = self._build_items(data.items)
        totals = self.recompute_totals(items, data.tax_rate)

        invoice_number = await self._generate_invoice_number(db, data.issue_date)

        invoice = Invoice(
            user_id=user_id,
            project_id=data.project_id,
            client_id=data.client_id,
            client_name=data.client_name,
            client_email=data.client_email,
            invoice_number=invoice_number,
            type=data.type.value,
            status=InvoiceStatus.DRAFT.value,
            issue_date=data.issue_date,
            due_date=data.due_date,
            payment_terms=data.payment_terms,
            tax_rate=data.tax_rate,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            amount_paid=ZERO,
            balance=totals.total,
            notes=data.notes,
            terms=data.terms,
        )
        invoice.items = items
        db.add(invoice)

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error(f"Errore di integrità durante creazione fattura: {e}")
            raise ConflictError("Errore durante la creazione della fattura")

        logger.info(f"Fattura {invoice_number} creata (id={invoice.id}, totale={totals.total})")
        return await self.get_by_id(db, invoice.id)

    async def _generate_invoice_number(
        self,
        db: AsyncSession,
        issue_date: date,
    ) -> str:
        """
        Genera numero fattura progressivo annuale.

        Formato: INV-YYYY-NNNN (es. INV-2025-0001)

        Su PostgreSQL acquisisce un advisory lock per anno, così due
        creazioni concorrenti non leggono lo stesso ultimo numero.

        Raises:
            ConflictError: Se si raggiunge il limite di 9999 fatture annue
        """
        year = issue_date.year
        year_prefix = f"INV-{year}-"

        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(:lock_key)"), {"lock_key": year})

        stmt = (
            select(Invoice.invoice_number)
            .where(Invoice.invoice_number.like(f"{year_prefix}%"))
            .order_by(Invoice.invoice_number.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        last_number = result.scalar_one_or_none()

        next_number = int(last_number.rsplit("-", 1)[1]) + 1 if last_number else 1

        if next_number > 9999:
            raise ConflictError(f"Limite numerazione fatture raggiunto per l'anno {year}")

        return f"{year_prefix}{next_number:04d}"

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------

    async def get_by_id(
        self,
        db: AsyncSession,
        invoice_id: str,
        user_id: Optional[str] = None,
        for_update: bool = False,
    ) -> Invoice:
        """
        Recupera una fattura per ID.

        Con for_update=True legge la riga con SELECT ... FOR UPDATE
        e ricarica i valori correnti nella sessione.

        Raises:
            NotFoundError: Fattura non trovata
            AuthorizationError: Fattura di un altro contractor
        """
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()

        if not invoice:
            raise NotFoundError(f"Fattura {invoice_id} non trovata")

        self._check_owner(invoice, user_id)
        return invoice

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        status_filter: Optional[InvoiceStatus] = None,
        today: Optional[date] = None,
    ) -> list[Invoice]:
        """
        Fatture del contractor, dalla più recente.

        Il filtro 'overdue' usa la vista derivata; 'sent' esclude
        le fatture scadute.
        """
        today = today or date.today()
        stmt = select(Invoice).where(Invoice.user_id == user_id)

        if status_filter == InvoiceStatus.OVERDUE:
            stmt = stmt.where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date < today,
            )
        elif status_filter == InvoiceStatus.SENT:
            stmt = stmt.where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date >= today,
            )
        elif status_filter is not None:
            stmt = stmt.where(Invoice.status == status_filter.value)

        stmt = stmt.order_by(Invoice.issue_date.desc(), Invoice.invoice_number.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_payments(
        self,
        db: AsyncSession,
        invoice_id: str,
        user_id: Optional[str] = None,
    ) -> list[Payment]:
        """Pagamenti della fattura, dal più recente."""
        await self.get_by_id(db, invoice_id, user_id)

        stmt = (
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------
    # Modifica e transizioni
    # ------------------------------------------------------------

    async def update(
        self,
        db: AsyncSession,
        invoice_id: str,
        data: InvoiceUpdate,
        user_id: Optional[str] = None,
    ) -> Invoice:
        """
        Aggiorna una fattura.

        Ogni modifica a righe o aliquota ricalcola totali e saldo
        prima della scrittura.

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: Fattura pagata o annullata
            BusinessValidationError: Scadenza precedente all'emissione
        """
        invoice = await self.get_by_id(db, invoice_id, user_id)

        if invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
            raise ConflictError(
                f"Impossibile modificare una fattura in stato '{invoice.status}'"
            )

        update_data = data.model_dump(exclude_unset=True, exclude={"items"})
        for field, value in update_data.items():
            setattr(invoice, field, value)

        if invoice.due_date < invoice.issue_date:
            raise BusinessValidationError(
                "La data di scadenza non può essere precedente alla data di emissione"
            )

        if data.items is not None:
            invoice.items = self._build_items(data.items)

        if data.items is not None or data.tax_rate is not None:
            totals = self.recompute_totals(invoice.items, invoice.tax_rate)
            invoice.subtotal = totals.subtotal
            invoice.tax = totals.tax
            invoice.total = totals.total
            self._apply_balance(invoice, utcnow())

        await db.commit()
        logger.info(f"Fattura {invoice.invoice_number} aggiornata")

        return await self.get_by_id(db, invoice.id)

    @staticmethod
    def _transition(invoice: Invoice, target: InvoiceStatus) -> None:
        current = InvoiceStatus(invoice.status)
        if target not in INVOICE_TRANSITIONS.get(current, []):
            raise ConflictError(
                f"Transizione di stato non consentita: {current.value} → {target.value}"
            )
        invoice.status = target.value

    async def send(
        self,
        db: AsyncSession,
        invoice_id: str,
        user_id: Optional[str] = None,
    ) -> Invoice:
        """Segna la fattura come inviata (draft → sent)."""
        invoice = await self.get_by_id(db, invoice_id, user_id)
        self._transition(invoice, InvoiceStatus.SENT)
        invoice.sent_at = utcnow()

        await db.commit()
        logger.info(f"Fattura {invoice.invoice_number} inviata")
        return await self.get_by_id(db, invoice.id)

    async def cancel(
        self,
        db: AsyncSession,
        invoice_id: str,
        user_id: Optional[str] = None,
    ) -> Invoice:
        """
        Annulla la fattura (draft|sent → cancelled).

        Raises:
            ConflictError: Transizione non consentita o pagamenti presenti
        """
        invoice = await self.get_by_id(db, invoice_id, user_id)

        count_result = await db.execute(
            select(func.count(Payment.id)).where(Payment.invoice_id == invoice.id)
        )
        if count_result.scalar() or invoice.amount_paid > ZERO:
            raise ConflictError(
                "Impossibile annullare una fattura con pagamenti registrati"
            )

        self._transition(invoice, InvoiceStatus.CANCELLED)

        await db.commit()
        logger.info(f"Fattura {invoice.invoice_number} annullata")
        return await self.get_by_id(db, invoice.id)

    # ------------------------------------------------------------
    # Pagamenti
    # ------------------------------------------------------------

    async def add_payment(
        self,
        db: AsyncSession,
        invoice_id: str,
        data: PaymentCreate,
        user_id: Optional[str] = None,
    ) -> PaymentResult:
        """
        Registra un pagamento e aggiorna amount_paid, balance e stato.

        Steps:
        1. Valida amount > 0 (prima di qualsiasi scrittura)
        2. Salva il pagamento (commit)
        3. Rilegge la fattura con SELECT ... FOR UPDATE
        4. amount_paid += amount, balance = max(0, total - amount_paid)
        5. Se balance <= 0: status = paid, paid_date = now (solo la prima volta)

        L'ordine delle scritture fa sì che l'unica incoerenza possibile
        sia un pagamento senza aggiornamento della fattura, mai il contrario.

        Raises:
            BusinessValidationError: Importo non positivo
            NotFoundError, AuthorizationError
            ConflictError: Fattura annullata
        """
        # Step 1: Validazione
        amount = _quantize(data.amount)
        if amount <= ZERO:
            raise BusinessValidationError("L'importo del pagamento deve essere maggiore di zero")

        invoice = await self.get_by_id(db, invoice_id, user_id)

        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise ConflictError("Impossibile registrare pagamenti su una fattura annullata")

        # Step 2: Pagamento immutabile
        now = utcnow()
        payment = Payment(
            user_id=invoice.user_id,
            invoice_id=invoice.id,
            amount=amount,
            payment_date=data.payment_date,
            method=data.method.value,
            reference=data.reference,
            notes=data.notes,
            created_at=now,
        )
        db.add(payment)
        await db.commit()

        # Step 3-5: Aggiornamento della fattura sul valore corrente
        invoice = await self.get_by_id(db, invoice_id, for_update=True)

        invoice.amount_paid = _quantize(Decimal(invoice.amount_paid) + amount)
        if invoice.amount_paid > invoice.total:
            logger.warning(
                f"Fattura {invoice.invoice_number}: pagato {invoice.amount_paid} "
                f"oltre il totale {invoice.total}"
            )
        self._apply_balance(invoice, now)

        await db.commit()

        logger.info(
            f"Pagamento {payment.id} di {amount} registrato sulla fattura "
            f"{invoice.invoice_number} (saldo {invoice.balance}, stato {invoice.status})"
        )

        return PaymentResult(
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount_paid=invoice.amount_paid,
            balance=invoice.balance,
            status=InvoiceStatus(invoice.status),
            paid_date=ensure_utc(invoice.paid_date),
        )

    async def mark_as_paid(
        self,
        db: AsyncSession,
        invoice_id: str,
        user_id: Optional[str] = None,
    ) -> Invoice:
        """
        Segna la fattura come interamente pagata.

        Sovrascrive: amount_paid = total, balance = 0, status = paid,
        paid_date = now, indipendentemente dai pagamenti registrati.

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: Fattura annullata
        """
        invoice = await self.get_by_id(db, invoice_id, user_id, for_update=True)

        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise ConflictError("Impossibile segnare come pagata una fattura annullata")

        if invoice.amount_paid > ZERO and invoice.amount_paid != invoice.total:
            logger.warning(
                f"Fattura {invoice.invoice_number}: amount_paid {invoice.amount_paid} "
                f"sovrascritto con il totale {invoice.total}"
            )

        invoice.amount_paid = invoice.total
        invoice.balance = ZERO
        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_date = utcnow()

        await db.commit()
        logger.info(f"Fattura {invoice.invoice_number} segnata come pagata")
        return await self.get_by_id(db, invoice.id)

    # ------------------------------------------------------------
    # Statistiche
    # ------------------------------------------------------------

    async def get_stats(
        self,
        db: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> InvoiceStats:
        """
        Statistiche di fatturazione del contractor.

        - pending: fatture 'sent' (scadute comprese), somma dei saldi
        - overdue: fatture 'sent' oltre la scadenza, somma dei saldi
        - paid_this_month: totale delle fatture pagate nel mese corrente
        """
        now = now or utcnow()
        today = now.date()

        invoices = await self.list_for_user(db, user_id)

        total_amount = ZERO
        pending_amount = ZERO
        overdue_amount = ZERO
        paid_this_month = ZERO
        pending_count = 0
        overdue_count = 0

        for invoice in invoices:
            total_amount += Decimal(invoice.total)

            if invoice.status == InvoiceStatus.SENT.value:
                pending_count += 1
                pending_amount += Decimal(invoice.balance)

            if invoice.status_on(today) == InvoiceStatus.OVERDUE.value:
                overdue_count += 1
                overdue_amount += Decimal(invoice.balance)

            paid_date = ensure_utc(invoice.paid_date)
            if (
                invoice.status == InvoiceStatus.PAID.value
                and paid_date is not None
                and paid_date.year == now.year
                and paid_date.month == now.month
            ):
                paid_this_month += Decimal(invoice.total)

        return InvoiceStats(
            total_invoices=len(invoices),
            total_amount=_quantize(total_amount),
            pending_amount=_quantize(pending_amount),
            overdue_amount=_quantize(overdue_amount),
            paid_this_month=_quantize(paid_this_month),
            overdue_count=overdue_count,
            pending_count=pending_count,
        )


# Istanza condivisa
invoice_service = InvoiceService()
