"""
Tests for InvoiceService.

Calcolo dei totali, registro pagamenti e statistiche su un
database SQLite in memoria.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import InvalidRequestError

from app.core.clock import utcnow
from app.core.exceptions import (
    AuthorizationError,
    BusinessValidationError,
    ConflictError,
)
from app.models import Invoice
from app.schemas.invoice import (
    InvoiceItemCreate,
    InvoiceStatus,
    InvoiceUpdate,
    PaymentCreate,
    PaymentMethod,
)
from app.services.invoice_service import InvoiceService

from tests.factories import CONTRACTOR_ID, OTHER_CONTRACTOR_ID, make_invoice_data


def payment(amount: str) -> PaymentCreate:
    return PaymentCreate(
        amount=Decimal(amount),
        payment_date=date.today(),
        method=PaymentMethod.BANK_TRANSFER,
        reference="CRO 123",
    )


@pytest.fixture
async def sent_invoice(db_session, invoice_service) -> Invoice:
    """Fattura da 1000 inviata al cliente."""
    invoice = await invoice_service.create(db_session, make_invoice_data(), CONTRACTOR_ID)
    return await invoice_service.send(db_session, invoice.id, CONTRACTOR_ID)


# ============================================================
# Tests for totals calculation (pure logic)
# ============================================================


class TestRecomputeTotals:
    """Tests for subtotal/tax/total."""

    def test_tax_on_subtotal(self):
        """Test 1000 al 22%: tasse 220, totale 1220."""
        items = [SimpleNamespace(total=Decimal("600")), SimpleNamespace(total=Decimal("400"))]

        totals = InvoiceService.recompute_totals(items, Decimal("22"))

        assert totals.subtotal == Decimal("1000.00")
        assert totals.tax == Decimal("220.00")
        assert totals.total == Decimal("1220.00")

    def test_tax_rounding(self):
        """Test arrotondamento al centesimo."""
        totals = InvoiceService.recompute_totals([SimpleNamespace(total=Decimal("10.05"))], Decimal("10"))

        assert totals.tax == Decimal("1.01")
        assert totals.total == Decimal("11.06")

    def test_no_items(self):
        """Test nessuna riga: tutto a zero."""
        totals = InvoiceService.recompute_totals([], Decimal("22"))

        assert totals.total == Decimal("0.00")

    def test_balance_never_negative(self):
        """Test saldo limitato a zero in caso di sovrapagamento."""
        assert InvoiceService.compute_balance(Decimal("100"), Decimal("150")) == Decimal("0")
        assert InvoiceService.compute_balance(Decimal("100"), Decimal("40")) == Decimal("60.00")


# ============================================================
# Tests for invoice lifecycle
# ============================================================


class TestInvoiceLifecycle:
    """Tests for creation, update and transitions."""

    async def test_create_draft(self, db_session, invoice_service):
        """Test nuova fattura: draft, saldo pari al totale."""
        invoice = await invoice_service.create(
            db_session,
            make_invoice_data(tax_rate=Decimal("22")),
            CONTRACTOR_ID,
        )

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.total == Decimal("1220.00")
        assert invoice.amount_paid == Decimal("0")
        assert invoice.balance == Decimal("1220.00")
        assert invoice.items[0].total == Decimal("1000.00")

    async def test_sequential_numbering(self, db_session, invoice_service):
        """Test numerazione INV-YYYY-NNNN progressiva."""
        first = await invoice_service.create(db_session, make_invoice_data(), CONTRACTOR_ID)
        second = await invoice_service.create(db_session, make_invoice_data(), OTHER_CONTRACTOR_ID)

        year = date.today().year
        assert first.invoice_number == f"INV-{year}-0001"
        assert second.invoice_number == f"INV-{year}-0002"

    def test_due_date_before_issue_date(self):
        """Test scadenza precedente all'emissione."""
        with pytest.raises((BusinessValidationError, PydanticValidationError)):
            make_invoice_data(due_date=date.today() - timedelta(days=1))

    def test_items_required(self):
        """Test almeno una riga."""
        with pytest.raises(PydanticValidationError):
            make_invoice_data(items=[])

    async def test_update_items_recomputes_totals(self, db_session, invoice_service, sent_invoice):
        """Test modifica righe: totali e saldo ricalcolati."""
        updated = await invoice_service.update(
            db_session,
            sent_invoice.id,
            InvoiceUpdate(
                items=[
                    InvoiceItemCreate(description="Opere murarie", quantity=Decimal("2"), unit_price=Decimal("750")),
                ],
                tax_rate=Decimal("10"),
            ),
            CONTRACTOR_ID,
        )

        assert updated.subtotal == Decimal("1500.00")
        assert updated.tax == Decimal("150.00")
        assert updated.total == Decimal("1650.00")
        assert updated.balance == Decimal("1650.00")

    async def test_update_tax_rate_only(self, db_session, invoice_service, sent_invoice):
        """Test modifica della sola aliquota."""
        updated = await invoice_service.update(
            db_session, sent_invoice.id, InvoiceUpdate(tax_rate=Decimal("22")), CONTRACTOR_ID
        )

        assert updated.total == Decimal("1220.00")

    @pytest.mark.parametrize("field", ["client_name", "issue_date", "due_date", "tax_rate"])
    def test_update_rejects_null_required_fields(self, field):
        """Test null esplicito rifiutato sui campi obbligatori."""
        with pytest.raises(PydanticValidationError):
            InvoiceUpdate.model_validate({field: None})

    async def test_update_accepts_null_optional_fields(self, db_session, invoice_service, sent_invoice):
        """Test null ammesso sui campi facoltativi."""
        updated = await invoice_service.update(
            db_session, sent_invoice.id, InvoiceUpdate.model_validate({"notes": None}), CONTRACTOR_ID
        )

        assert updated.notes is None
        assert updated.total == Decimal("1000.00")

    async def test_update_other_contractor(self, db_session, invoice_service, sent_invoice):
        """Test fattura di un altro contractor."""
        with pytest.raises(AuthorizationError):
            await invoice_service.update(
                db_session, sent_invoice.id, InvoiceUpdate(notes="x"), OTHER_CONTRACTOR_ID
            )

    async def test_send_twice_rejected(self, db_session, invoice_service, sent_invoice):
        """Test transizione sent → sent non ammessa."""
        with pytest.raises(ConflictError):
            await invoice_service.send(db_session, sent_invoice.id, CONTRACTOR_ID)

    async def test_cancel_with_payments_rejected(self, db_session, invoice_service, sent_invoice):
        """Test annullamento impossibile con pagamenti registrati."""
        await invoice_service.add_payment(db_session, sent_invoice.id, payment("100"), CONTRACTOR_ID)

        with pytest.raises(ConflictError):
            await invoice_service.cancel(db_session, sent_invoice.id, CONTRACTOR_ID)

    async def test_cancel_and_update_rejected(self, db_session, invoice_service, sent_invoice):
        """Test fattura annullata non più modificabile."""
        cancelled = await invoice_service.cancel(db_session, sent_invoice.id, CONTRACTOR_ID)
        assert cancelled.status == InvoiceStatus.CANCELLED.value

        with pytest.raises(ConflictError):
            await invoice_service.update(
                db_session, sent_invoice.id, InvoiceUpdate(notes="x"), CONTRACTOR_ID
            )

    async def test_effective_status_overdue(self, db_session, invoice_service, sent_invoice):
        """Test fattura inviata e scaduta letta come overdue."""
        later = sent_invoice.due_date + timedelta(days=1)

        assert invoice_service.effective_status(sent_invoice, later) == InvoiceStatus.OVERDUE
        assert invoice_service.to_read(sent_invoice, later).effective_status == InvoiceStatus.OVERDUE
        assert sent_invoice.status == InvoiceStatus.SENT.value

        overdue = await invoice_service.list_for_user(
            db_session, CONTRACTOR_ID, InvoiceStatus.OVERDUE, today=later
        )
        assert [invoice.id for invoice in overdue] == [sent_invoice.id]


# ============================================================
# Tests for payments ledger
# ============================================================


class TestPayments:
    """Tests for partial payments and balance."""

    async def test_partial_then_full_payment(self, db_session, invoice_service, sent_invoice):
        """Test 300 + 200 = 500 pagati, poi 500 chiude la fattura."""
        await invoice_service.add_payment(db_session, sent_invoice.id, payment("300"), CONTRACTOR_ID)
        result = await invoice_service.add_payment(
            db_session, sent_invoice.id, payment("200"), CONTRACTOR_ID
        )

        assert result.amount_paid == Decimal("500.00")
        assert result.balance == Decimal("500.00")
        assert result.status == InvoiceStatus.SENT
        assert result.paid_date is None

        result = await invoice_service.add_payment(
            db_session, sent_invoice.id, payment("500"), CONTRACTOR_ID
        )

        assert result.amount_paid == Decimal("1000.00")
        assert result.balance == Decimal("0.00")
        assert result.status == InvoiceStatus.PAID
        assert result.paid_date is not None

        payments = await invoice_service.list_payments(db_session, sent_invoice.id, CONTRACTOR_ID)
        assert sorted(p.amount for p in payments) == [Decimal("200.00"), Decimal("300.00"), Decimal("500.00")]

    async def test_payments_not_loaded_implicitly(self, db_session, invoice_service, sent_invoice):
        """Test i pagamenti si leggono solo tramite list_payments."""
        await invoice_service.add_payment(db_session, sent_invoice.id, payment("100"), CONTRACTOR_ID)
        invoice = await invoice_service.get_by_id(db_session, sent_invoice.id)

        with pytest.raises(InvalidRequestError):
            invoice.payments

        payments = await invoice_service.list_payments(db_session, invoice.id)
        assert [p.amount for p in payments] == [Decimal("100.00")]

    @pytest.mark.parametrize("amount", ["0", "-50"])
    async def test_non_positive_amount_rejected(self, db_session, invoice_service, sent_invoice, amount):
        """Test importo zero o negativo: nessuna scrittura."""
        with pytest.raises(BusinessValidationError):
            await invoice_service.add_payment(
                db_session, sent_invoice.id, payment(amount), CONTRACTOR_ID
            )

        assert await invoice_service.list_payments(db_session, sent_invoice.id) == []

    async def test_overpayment_is_logged(self, db_session, invoice_service, sent_invoice, caplog):
        """Test sovrapagamento ammesso con avviso, saldo a zero."""
        with caplog.at_level(logging.WARNING, logger="app.services.invoice_service"):
            result = await invoice_service.add_payment(
                db_session, sent_invoice.id, payment("1200"), CONTRACTOR_ID
            )

        assert result.amount_paid == Decimal("1200.00")
        assert result.balance == Decimal("0")
        assert result.status == InvoiceStatus.PAID
        assert "oltre il totale" in caplog.text

    async def test_paid_date_set_once(self, db_session, invoice_service, sent_invoice):
        """Test paid_date non cambia con pagamenti successivi."""
        first = await invoice_service.add_payment(
            db_session, sent_invoice.id, payment("1000"), CONTRACTOR_ID
        )
        second = await invoice_service.add_payment(
            db_session, sent_invoice.id, payment("10"), CONTRACTOR_ID
        )

        assert second.paid_date == first.paid_date

    async def test_payment_on_cancelled_invoice(self, db_session, invoice_service, sent_invoice):
        """Test pagamento su fattura annullata."""
        await invoice_service.cancel(db_session, sent_invoice.id, CONTRACTOR_ID)

        with pytest.raises(ConflictError):
            await invoice_service.add_payment(
                db_session, sent_invoice.id, payment("100"), CONTRACTOR_ID
            )

    async def test_mark_as_paid_overwrites(self, db_session, invoice_service, sent_invoice):
        """Test segna come pagata: amount_paid sovrascritto con il totale."""
        await invoice_service.add_payment(db_session, sent_invoice.id, payment("300"), CONTRACTOR_ID)

        invoice = await invoice_service.mark_as_paid(db_session, sent_invoice.id, CONTRACTOR_ID)

        assert invoice.amount_paid == Decimal("1000.00")
        assert invoice.balance == Decimal("0")
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.paid_date is not None


# ============================================================
# Tests for statistics
# ============================================================


class TestInvoiceStats:
    """Tests for billing statistics."""

    async def test_stats(self, db_session, invoice_service):
        """Test conteggi e importi per stato."""
        today = date.today()

        # Inviata, in corso con acconto
        pending = await invoice_service.create(db_session, make_invoice_data(), CONTRACTOR_ID)
        await invoice_service.send(db_session, pending.id, CONTRACTOR_ID)
        await invoice_service.add_payment(db_session, pending.id, payment("400"), CONTRACTOR_ID)

        # Inviata e scaduta
        overdue = await invoice_service.create(
            db_session,
            make_invoice_data(
                issue_date=today - timedelta(days=60),
                due_date=today - timedelta(days=30),
            ),
            CONTRACTOR_ID,
        )
        await invoice_service.send(db_session, overdue.id, CONTRACTOR_ID)

        # Pagata questo mese
        paid = await invoice_service.create(db_session, make_invoice_data(), CONTRACTOR_ID)
        await invoice_service.mark_as_paid(db_session, paid.id, CONTRACTOR_ID)

        # Bozza
        await invoice_service.create(db_session, make_invoice_data(), CONTRACTOR_ID)

        # Di un altro contractor
        await invoice_service.create(db_session, make_invoice_data(), OTHER_CONTRACTOR_ID)

        stats = await invoice_service.get_stats(db_session, CONTRACTOR_ID, now=utcnow())

        assert stats.total_invoices == 4
        assert stats.total_amount == Decimal("4000.00")
        assert stats.pending_count == 2
        assert stats.pending_amount == Decimal("1600.00")
        assert stats.overdue_count == 1
        assert stats.overdue_amount == Decimal("1000.00")
        assert stats.paid_this_month == Decimal("1000.00")

    async def test_stats_empty(self, db_session, invoice_service):
        """Test nessuna fattura."""
        stats = await invoice_service.get_stats(db_session, CONTRACTOR_ID)

        assert stats.total_invoices == 0
        assert stats.total_amount == Decimal("0.00")
