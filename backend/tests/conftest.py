"""
Pytest configuration and fixtures.

I test usano un database SQLite in memoria (aiosqlite) al posto di
PostgreSQL: stessi modelli, stessa sessione async, nessun servizio esterno.
Le variabili d'ambiente vanno impostate prima di importare app.*.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["NOTIFICATION_BACKEND"] = "log"
os.environ["EXPIRE_SWEEP_INTERVAL_SECONDS"] = "0"

from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.core.deps import get_notifier
from app.core.security import approval_rate_limiter, create_access_token
from app.main import app
from app.models import Base, ChangeOrder, Project
from app.schemas.change_order import ChangeOrderItemCreate
from app.services.change_order_service import ChangeOrderService
from app.services.invoice_service import InvoiceService

from tests.factories import (
    CONTRACTOR_ID,
    FailingNotifier,
    RecordingNotifier,
    SpyProjector,
    make_change_order_data,
)


# ============================================================
# Fixtures per il database
# ============================================================


@pytest.fixture
async def engine():
    """Engine SQLite in memoria condiviso da tutte le connessioni del test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sessione database per i test dei service."""
    async with session_factory() as session:
        yield session


# ============================================================
# Fixtures per gli effetti collaterali
# ============================================================


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def spy_projector():
    return SpyProjector()


@pytest.fixture
def change_order_service(spy_projector):
    return ChangeOrderService(projector=spy_projector)


@pytest.fixture
def invoice_service():
    return InvoiceService()


# ============================================================
# Fixtures per i dati
# ============================================================


@pytest.fixture
async def project(db_session) -> Project:
    """Progetto del contractor con costo stimato 100000."""
    project = Project(
        user_id=CONTRACTOR_ID,
        name="Ristrutturazione Via Roma 1",
        estimated_cost=Decimal("100000.00"),
        actual_cost=Decimal("0.00"),
    )
    db_session.add(project)
    await db_session.commit()
    return project


@pytest.fixture
async def change_order(db_session, change_order_service, project) -> ChangeOrder:
    """Ordine di modifica pending da 50000 + 7500."""
    return await change_order_service.create(
        db_session,
        make_change_order_data(project.id),
        CONTRACTOR_ID,
    )


@pytest.fixture
def item_factory():
    def _factory(**overrides) -> ChangeOrderItemCreate:
        data = {
            "description": "Piastrelle",
            "quantity": Decimal("10"),
            "unit": "m2",
            "unit_price": Decimal("50"),
        }
        data.update(overrides)
        return ChangeOrderItemCreate(**data)

    return _factory


# ============================================================
# Fixtures per i test API
# ============================================================


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = CONTRACTOR_ID) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture
async def client(session_factory, notifier) -> AsyncGenerator[AsyncClient, None]:
    """Client HTTP sull'app con database e notifier sostituiti."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    approval_rate_limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    approval_rate_limiter.reset()
