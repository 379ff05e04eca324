"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database that the app reaches
through ``app.dependency_overrides[get_session]`` (and ``get_engine`` for the
websocket, which opens its own sessions). S3 is patched out for
the whole suite; payment gateway calls are patched per test.
"""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine
from sqlmodel.pool import StaticPool

# Configure before the app (and its settings singleton) is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = "logs/test.log"
os.environ["LOG_ENQUEUE"] = "false"

from jerseynexus.core.security import create_access_token, hash_password  # noqa: E402
from jerseynexus.db.session import create_db_and_tables, get_engine, get_session  # noqa: E402
from jerseynexus.main import app  # noqa: E402
from jerseynexus.models import (  # noqa: E402
    Category,
    CategoryType,
    Product,
    ProductImage,
    User,
    UserRole,
)
from jerseynexus.services.s3 import s3_service  # noqa: E402

PASSWORD = "Password1!"


# ============================================================================
# DATABASE AND CLIENT
# ============================================================================


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(bind=engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_engine] = lambda: session.get_bind()
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def mock_s3():
    """No test talks to AWS."""
    with patch.object(s3_service, "upload_file", return_value="products/test.jpg") as upload, \
            patch.object(s3_service, "delete_file", return_value=True) as delete, \
            patch.object(s3_service, "list_keys", return_value=[]) as list_keys:
        yield {"upload": upload, "delete": delete, "list_keys": list_keys}


# ============================================================================
# USERS
# ============================================================================


def create_user(session: Session, email: str, name: str = "Test User",
                role: UserRole = UserRole.USER, **fields) -> User:
    user = User(name=name, email=email, password_hash=hash_password(PASSWORD), role=role, **fields)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def user(session: Session) -> User:
    return create_user(session, "customer@example.com", name="Sita Customer")


@pytest.fixture
def other_user(session: Session) -> User:
    return create_user(session, "other@example.com", name="Ram Other")


@pytest.fixture
def admin(session: Session) -> User:
    return create_user(session, "admin@jerseynexus.com", name="Store Admin", role=UserRole.ADMIN)


@pytest.fixture
def user_headers(user: User) -> dict:
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin: User) -> dict:
    return auth_headers(admin)


# ============================================================================
# CATALOGUE
# ============================================================================


@pytest.fixture
def category(session: Session) -> Category:
    category = Category(name="Football Jerseys", slug="football-jerseys", type=CategoryType.PRODUCT)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@pytest.fixture
def product(session: Session, category: Category) -> Product:
    product = Product(
        name="Nepal Home Jersey",
        slug="nepal-home-jersey",
        description="Crimson home kit",
        brand="Kelme",
        price=2500.0,
        stock=10,
        category_id=category.id,
        featured=True,
        sizes=["M", "L"],
        colors=["Crimson"],
    )
    product.images.append(ProductImage(url="https://cdn.example.com/nepal.jpg", is_primary=True))
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


@pytest.fixture
def sale_product(session: Session, category: Category) -> Product:
    product = Product(
        name="Brazil Retro Shirt",
        slug="brazil-retro-shirt",
        price=3500.0,
        sale_price=3000.0,
        stock=5,
        category_id=category.id,
    )
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def shipping_address() -> dict:
    return {
        "name": "Sita Customer",
        "phone": "9812345678",
        "address": "Thamel Marg 12",
        "city": "Kathmandu",
        "postalCode": "44600",
    }


def order_payload(product_id: int, quantity: int = 2, **fields) -> dict:
    payload = {
        "items": [{"productId": product_id, "quantity": quantity, "size": "M"}],
        "shippingAddress": shipping_address(),
        "paymentMethod": "COD",
    }
    payload.update(fields)
    return payload


@pytest.fixture
def placed_order(client: TestClient, user_headers: dict, product: Product) -> dict:
    """A COD order for two of ``product`` placed through the API."""
    response = client.post("/api/orders/", json=order_payload(product.id), headers=user_headers)
    assert response.status_code == 201
    return response.json()["data"]["order"]
