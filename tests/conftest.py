"""Shared fixtures: in-memory SQLite, seeded catalog and users, API client."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-length-for-hs256"
os.environ.pop("EMAIL_API_KEY", None)
os.environ.pop("REDIS_URL", None)

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from wholesale.application.errors import NotificationError
from wholesale.application.rbac import Actor
from wholesale.core_settings import get_settings
from wholesale.domain.models import Base, Product, ProductVariant, Role, Tier, User
from wholesale.infrastructure.auth import create_access_token
from wholesale.infrastructure.cache import ProductListingCache, get_product_cache
from wholesale.infrastructure.db import get_db, make_engine, make_sessionmaker
from wholesale.infrastructure.email import get_dispatcher
from wholesale.main import app


class RecordingDispatcher:
    """Keeps every message instead of sending it."""

    def __init__(self):
        self.invoices = []
        self.reminders = []

    def send_invoice_email(self, message):
        self.invoices.append(message)

    def send_invoice_reminder(self, message):
        self.reminders.append(message)


class FailingDispatcher:
    def __init__(self):
        self.attempts = 0

    def send_invoice_email(self, message):
        self.attempts += 1
        raise NotificationError("Email provider unreachable: connection refused")

    def send_invoice_reminder(self, message):
        self.attempts += 1
        raise NotificationError("Email provider unreachable: connection refused")


@pytest.fixture
def engine():
    engine = make_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def seed(session_factory):
    """Users and catalog; returns their ids so tests never hold a session open."""
    with session_factory() as db:
        customer = User(email="buyer@dispensary.com", name="Jamie Buyer", role=Role.VERIFIED.value, tier=Tier.GOLD.value)
        other = User(email="other@shop.com", name="Other Buyer", company="Other Shop", role=Role.VERIFIED.value)
        visitor = User(email="visitor@example.com", role=Role.PUBLIC.value)
        manager = User(email="manager@gatorbudz.com", name="Morgan", role=Role.MANAGER.value)
        admin = User(email="admin@gatorbudz.com", name="Alex", role=Role.ADMIN.value)
        flower = Product(
            name="Premium Flower",
            slug="premium-flower",
            category="Flower",
            price_gold=Decimal("150.00"),
            price_platinum=Decimal("140.00"),
            price_diamond=Decimal("130.00"),
            variants=[
                ProductVariant(
                    subcategory="Blue Dream",
                    price_gold=Decimal("150.00"),
                    price_platinum=Decimal("140.00"),
                    price_diamond=Decimal("130.00"),
                ),
                ProductVariant(
                    subcategory="OG Kush",
                    price_gold=Decimal("160.00"),
                    price_platinum=Decimal("150.00"),
                    price_diamond=Decimal("140.00"),
                ),
            ],
        )
        gummies = Product(
            name="Gummies",
            slug="gummies",
            category="Edibles",
            price_gold=Decimal("75.00"),
            price_platinum=Decimal("70.00"),
            price_diamond=Decimal("65.00"),
        )
        db.add_all([customer, other, visitor, manager, admin, flower, gummies])
        db.commit()
        return {
            "customer": customer.id,
            "other": other.id,
            "visitor": visitor.id,
            "manager": manager.id,
            "admin": admin.id,
            "flower": flower.id,
            "blue_dream": flower.variants[0].id,
            "og_kush": flower.variants[1].id,
            "gummies": gummies.id,
        }


@pytest.fixture
def db(session_factory, seed):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def customer(seed):
    return Actor(user_id=seed["customer"], role=Role.VERIFIED)


@pytest.fixture
def manager(seed):
    return Actor(user_id=seed["manager"], role=Role.MANAGER)


@pytest.fixture
def admin(seed):
    return Actor(user_id=seed["admin"], role=Role.ADMIN)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def product_cache():
    return ProductListingCache(ttl=60, maxsize=32)


@pytest.fixture
def client(session_factory, seed, dispatcher, product_cache):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_product_cache] = lambda: product_cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(user_id: int, role: Role) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role.value)}"}


@pytest.fixture
def headers(seed):
    """Authorization headers per seeded user."""
    return {
        "customer": auth_header(seed["customer"], Role.VERIFIED),
        "other": auth_header(seed["other"], Role.VERIFIED),
        "visitor": auth_header(seed["visitor"], Role.PUBLIC),
        "manager": auth_header(seed["manager"], Role.MANAGER),
        "admin": auth_header(seed["admin"], Role.ADMIN),
    }


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def place_order(db, seed, customer):
    """Create a PENDING order for the seeded customer: 2 x Blue Dream at 150 + 2 x Gummies at 75."""
    from wholesale.application.schemas import OrderCreate
    from wholesale.application.service import OrderService

    def _place(items=None, actor=None, notes=None):
        items = items or [
            {"productId": seed["flower"], "variantId": seed["blue_dream"], "quantity": 2,
             "unitPrice": "150.00", "strain": "Blue Dream"},
            {"productId": seed["gummies"], "quantity": 2, "unitPrice": "75.00"},
        ]
        data = OrderCreate.model_validate({"items": items, "notes": notes})
        return OrderService(db).create(data, actor or customer)

    return _place
