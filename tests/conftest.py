"""
Pytest configuration and shared test fixtures.

Tests run against a throwaway SQLite database (aiosqlite) created from the ORM
metadata. External integrations (SES, Stripe, carrier) are replaced with
mocks or httpx mock transports; nothing leaves the process.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///./returnflow-test.db")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Any, AsyncGenerator, Optional  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from returnflow.core.config import Settings  # noqa: E402
from returnflow.core.security import create_access_token  # noqa: E402
from returnflow.database.base import Base  # noqa: E402
from returnflow.database.models import (  # noqa: E402
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ProductVariant,
    Return,
    ReturnStatusHistory,
    User,
    UserRole,
)
from returnflow.services.carrier.client import CarrierLabelGateway  # noqa: E402
from returnflow.services.notifications.service import NotificationDispatcher  # noqa: E402
from returnflow.services.payments.stripe_client import StripeClient  # noqa: E402
from returnflow.services.returns.enums import ReturnStatus  # noqa: E402
from returnflow.services.returns.service import ReturnService  # noqa: E402

LABEL_BYTES = b"%PDF-1.4 return label"


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file backed SQLite engine with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'returns.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the code under test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def check_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Independent session for asserting on committed state."""
    async with session_factory() as session:
        yield session


# ============================================================================
# Test Data Factories
# ============================================================================


class ReturnTestDataFactory:
    """Persists users, variants, orders and returns for tests."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _add(self, *objects: Any) -> None:
        async with self.session_factory() as session:
            session.add_all(objects)
            await session.commit()

    async def create_user(
        self,
        role: UserRole = UserRole.CUSTOMER,
        email: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=uuid4(),
            email=email or f"{uuid4().hex[:10]}@example.com",
            full_name="Test User",
            role=role,
            is_active=is_active,
        )
        await self._add(user)
        return user

    async def create_variant(self, stock_quantity: int = 5) -> ProductVariant:
        variant = ProductVariant(
            id=uuid4(),
            product_id=uuid4(),
            sku=f"SKU-{uuid4().hex[:8]}",
            size="M",
            color="Zwart",
            stock_quantity=stock_quantity,
        )
        await self._add(variant)
        return variant

    async def create_order(
        self,
        user: Optional[User] = None,
        email: Optional[str] = None,
        status: OrderStatus = OrderStatus.DELIVERED,
        delivered_days_ago: Optional[int] = 2,
        variant: Optional[ProductVariant] = None,
        variant_id: Optional[UUID] = None,
        quantity: int = 2,
        price: Decimal = Decimal("49.95"),
        payment_intent_id: Optional[str] = "pi_test_123",
    ) -> Order:
        delivered_at = (
            datetime.now(timezone.utc) - timedelta(days=delivered_days_ago)
            if delivered_days_ago is not None
            else None
        )
        order = Order(
            id=uuid4(),
            user_id=user.id if user else None,
            email=email or (user.email if user else "guest@example.com"),
            status=status,
            payment_status=PaymentStatus.PAID,
            subtotal=price * quantity,
            shipping_cost=Decimal("0.00"),
            total=price * quantity,
            shipping_address={
                "name": "Jan Jansen",
                "address": "Kerkstraat 1",
                "city": "Utrecht",
                "postalCode": "3511AA",
                "country": "NL",
            },
            stripe_payment_intent_id=payment_intent_id,
            has_returns=False,
            paid_at=datetime.now(timezone.utc) - timedelta(days=5),
            delivered_at=delivered_at,
        )
        item = OrderItem(
            id=uuid4(),
            order_id=order.id,
            product_id=variant.product_id if variant else uuid4(),
            variant_id=variant.id if variant else variant_id,
            product_name="Wollen trui",
            size="M",
            color="Zwart",
            quantity=quantity,
            price_at_purchase=price,
        )
        order.items = [item]
        await self._add(order)
        return order

    async def create_return(
        self,
        order: Order,
        status: ReturnStatus = ReturnStatus.RETURN_REQUESTED,
        quantity: Optional[int] = None,
        refund_amount: Optional[Decimal] = None,
        return_label_url: Optional[str] = None,
        stripe_refund_id: Optional[str] = None,
    ) -> Return:
        item = order.items[0]
        quantity = quantity or item.quantity
        return_request = Return(
            id=uuid4(),
            order_id=order.id,
            user_id=order.user_id,
            status=status,
            return_reason="Past niet",
            return_items=[
                {"order_item_id": str(item.id), "quantity": quantity, "reason": "Te klein"}
            ],
            refund_amount=(
                refund_amount
                if refund_amount is not None
                else item.price_at_purchase * quantity
            ),
            return_label_url=return_label_url,
            stripe_refund_id=stripe_refund_id,
        )
        history = ReturnStatusHistory(return_id=return_request.id, status=status)
        await self._add(return_request)
        await self._add(history)
        return return_request


@pytest.fixture
def factory(session_factory: async_sessionmaker[AsyncSession]) -> ReturnTestDataFactory:
    return ReturnTestDataFactory(session_factory)


# ============================================================================
# Integration Fixtures
# ============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'returns.db'}",
        carrier_public_key="pk_carrier",
        carrier_secret_key="sk_carrier",
        stripe_secret_key="sk_test_returns",
        return_window_days=14,
    )


@pytest.fixture
def notifications() -> MagicMock:
    """Notification dispatcher mock; every send succeeds by default."""
    dispatcher = MagicMock(spec=NotificationDispatcher)
    dispatcher.send_approval_email.return_value = True
    dispatcher.send_rejection_email.return_value = True
    dispatcher.send_refund_email.return_value = True
    return dispatcher


@pytest.fixture
def payments() -> MagicMock:
    """Stripe client mock returning a succeeded refund."""
    client = MagicMock(spec=StripeClient)
    client.create_refund.return_value = SimpleNamespace(id="re_test_1", status="succeeded")
    return client


@pytest.fixture
def carrier_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def carrier_content_type() -> str:
    return "application/pdf"


@pytest.fixture
def carrier(
    carrier_requests: list[httpx.Request], carrier_content_type: str
) -> CarrierLabelGateway:
    """Carrier gateway answering every request with the label bytes."""

    def handler(request: httpx.Request) -> httpx.Response:
        carrier_requests.append(request)
        return httpx.Response(
            200,
            content=LABEL_BYTES,
            headers={"content-type": carrier_content_type},
        )

    return CarrierLabelGateway(
        public_key="pk_carrier",
        secret_key="sk_carrier",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def return_service(
    db_session: AsyncSession,
    test_settings: Settings,
    notifications: MagicMock,
    carrier: CarrierLabelGateway,
    payments: MagicMock,
) -> ReturnService:
    return ReturnService(
        db_session,
        settings=test_settings,
        notifications=notifications,
        carrier=carrier,
        payments=payments,
    )


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def auth_headers():
    """Build the bearer header for a user."""

    def build(user: User) -> dict[str, str]:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def label_bytes() -> bytes:
    return LABEL_BYTES


@pytest.fixture
async def api_client(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    notifications: MagicMock,
    carrier: CarrierLabelGateway,
    payments: MagicMock,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for the application wired to the test database."""
    from returnflow.api.deps import get_return_service
    from returnflow.database.connection import get_db
    from returnflow.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_return_service() -> AsyncGenerator[ReturnService, None]:
        async with session_factory() as session:
            yield ReturnService(
                session,
                settings=test_settings,
                notifications=notifications,
                carrier=carrier,
                payments=payments,
            )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_return_service] = override_get_return_service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
