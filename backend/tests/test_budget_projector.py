"""
Tests for ProjectBudgetProjector.
"""

from decimal import Decimal

import pytest

from app.core.exceptions import ProjectionFailure
from app.schemas.change_order import ClientResponse
from app.services.budget_projector import ProjectBudgetProjector
from app.services.change_order_service import ChangeOrderService
from app.services.project_service import ProjectService

from tests.factories import CONTRACTOR_ID, FailingProjector, make_change_order_data


@pytest.fixture
def projector():
    return ProjectBudgetProjector()


async def estimated_cost(db_session, project_id) -> Decimal:
    project = await ProjectService().get_by_id(db_session, project_id)
    return project.estimated_cost


class TestApplyChangeOrder:
    """Tests for the additive budget update."""

    async def test_additive_updates(self, db_session, projector, project):
        """Test 100000 + 7500 - 2000 = 105500."""
        assert await projector.apply_change_order(db_session, project.id, Decimal("7500")) is True
        assert await projector.apply_change_order(db_session, project.id, Decimal("-2000")) is True

        assert await estimated_cost(db_session, project.id) == Decimal("105500.00")

    async def test_applied_once_per_change_order(
        self, db_session, projector, project, change_order
    ):
        """Test con l'ID dell'ordine il delta si applica una sola volta."""
        project_id, change_order_id = project.id, change_order.id
        amount = change_order.change_amount

        first = await projector.apply_change_order(
            db_session, project_id, amount, change_order_id=change_order_id
        )
        second = await projector.apply_change_order(
            db_session, project_id, amount, change_order_id=change_order_id
        )

        assert (first, second) == (True, False)
        assert await estimated_cost(db_session, project_id) == Decimal("107500.00")

    async def test_repeat_keeps_loaded_objects_usable(
        self, db_session, projector, project, change_order
    ):
        """Test dopo un tentativo ripetuto gli oggetti caricati restano leggibili."""
        for _ in range(2):
            await projector.apply_change_order(
                db_session, project.id, Decimal("100"), change_order_id=change_order.id
            )

        assert project.name == "Ristrutturazione Via Roma 1"
        assert change_order.title == "Ampliamento bagno"

        await db_session.refresh(change_order)
        assert change_order.budget_applied_at is not None

    async def test_unknown_project(self, db_session, projector, change_order):
        """Test progetto inesistente: errore e marker non impostato."""
        with pytest.raises(ProjectionFailure):
            await projector.apply_change_order(
                db_session, "missing", Decimal("100"), change_order_id=change_order.id
            )

        await db_session.refresh(change_order)
        assert change_order.budget_applied_at is None


class TestReconcile:
    """Tests for reconciliation of approved orders without budget marker."""

    async def test_reconcile_applies_missing_delta(
        self, db_session, projector, project, notifier
    ):
        """Test approvazione con proiezione fallita recuperata dalla riconciliazione."""
        service = ChangeOrderService(projector=FailingProjector())
        change_order = await service.create(
            db_session, make_change_order_data(project.id), CONTRACTOR_ID
        )
        await service.respond_by_token(
            db_session, change_order.approval_token, ClientResponse.APPROVED, notifier=notifier
        )
        assert await estimated_cost(db_session, project.id) == Decimal("100000.00")

        result = await projector.reconcile(db_session)

        assert result.applied_count == 1
        assert result.failed_ids == []
        assert await estimated_cost(db_session, project.id) == Decimal("107500.00")

        # Seconda esecuzione: nulla da fare
        again = await projector.reconcile(db_session)
        assert again.applied_count == 0
        assert await estimated_cost(db_session, project.id) == Decimal("107500.00")

    async def test_reconcile_ignores_pending_and_declined(
        self, db_session, projector, project, change_order_service, change_order, notifier
    ):
        """Test solo gli ordini approvati vengono riconciliati."""
        declined = await change_order_service.create(
            db_session, make_change_order_data(project.id), CONTRACTOR_ID
        )
        await change_order_service.respond_by_token(
            db_session, declined.approval_token, ClientResponse.DECLINED, notifier=notifier
        )

        result = await projector.reconcile(db_session)

        assert result.applied_count == 0
        assert await estimated_cost(db_session, project.id) == Decimal("100000.00")
