import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_mock"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_mock"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.main import app
from app.models.database import Base, get_db
from app.models.order import Order, OrderItem, OrderStatus, SubOrder
from app.models.product import Product
from app.models.user import User

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def make_token(user: User) -> str:
    return jwt.encode(
        {"sub": str(user.id), "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def address_payload(name: str = "Jane Doe") -> dict:
    return {
        "fullName": name,
        "address": "1 Main St",
        "city": "Springfield",
        "zipCode": "12345",
        "country": "US",
    }


def build_order_payload(items: list[tuple[int, int]], **extra) -> dict:
    payload = {
        "items": [{"productId": product_id, "quantity": quantity} for product_id, quantity in items],
        "shippingAddress": address_payload(),
        "billingAddress": address_payload(),
    }
    payload.update(extra)
    return payload


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_user(db: Session, email: str, display_name: str, is_admin: bool = False) -> User:
    user = User(email=email, display_name=display_name, is_admin=is_admin)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a test user."""
    return _create_user(db, "test@example.com", "Test User")


@pytest.fixture
def test_user2(db: Session) -> User:
    """Create a second test user."""
    return _create_user(db, "test2@example.com", "Test User 2")


@pytest.fixture
def admin_user(db: Session) -> User:
    return _create_user(db, "admin@example.com", "Admin", is_admin=True)


def _create_product(db: Session, slug: str, price: str, discount: int, stock: int, **extra) -> Product:
    product = Product(
        title=extra.pop("title", slug.replace("-", " ").title()),
        slug=slug,
        price=Decimal(price),
        discount=discount,
        stock=stock,
        hs_code=extra.pop("hs_code", "6109.10"),
        is_active=extra.pop("is_active", True),
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def test_product(db: Session) -> Product:
    """Priced 10.00 with a 10% discount and 5 units in stock."""
    return _create_product(db, "test-shirt", "10.00", 10, 5)


@pytest.fixture
def test_product2(db: Session) -> Product:
    return _create_product(db, "test-mug", "7.50", 0, 1)


@pytest.fixture
def cheap_product(db: Session) -> Product:
    return _create_product(db, "sticker", "0.40", 0, 100)


@pytest.fixture
def inactive_product(db: Session) -> Product:
    return _create_product(db, "retired-hat", "15.00", 0, 10, is_active=False)


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {make_token(test_user)}"}


@pytest.fixture
def auth_headers2(test_user2: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(test_user2)}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(admin_user)}"}


@pytest.fixture
def pending_order(db: Session, test_user: User, test_product: Product) -> Order:
    """A PENDING order for 2 x test_product (total 18.00), without a payment intent."""
    order = Order(
        order_number="ORD-1700000000000-0001",
        user_id=test_user.id,
        total_amount=Decimal("18.00"),
        currency="USD",
        shipping_address=address_payload(),
        billing_address=address_payload(),
        status=OrderStatus.PENDING.value,
        payment_attempt=0,
        sub_orders=[
            SubOrder(
                status=OrderStatus.PENDING.value,
                items=[
                    OrderItem(
                        product_id=test_product.id,
                        quantity=2,
                        unit_price=Decimal("9.00"),
                    )
                ],
            )
        ],
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


@pytest.fixture
def order_payload():
    """Builder for POST /api/orders bodies: ``order_payload([(product_id, qty)], userId=...)``."""
    return build_order_payload
