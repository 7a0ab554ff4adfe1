import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db, init_db
from main import app


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def signup(client, name, email, type_="BUYER", password="pw1234"):
    res = client.post("/users", json={"type": type_, "name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    return res.json()


def login_headers(client, email, password="pw1234"):
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    token = res.json()["accessToken"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def buyer(client):
    user = signup(client, "buyer", "buyer@example.com")
    return {"user": user, "headers": login_headers(client, "buyer@example.com")}


@pytest.fixture
def other_buyer(client):
    user = signup(client, "other", "other@example.com")
    return {"user": user, "headers": login_headers(client, "other@example.com")}


@pytest.fixture
def seller(client):
    user = signup(client, "seller", "seller@example.com", type_="SELLER")
    headers = login_headers(client, "seller@example.com")
    res = client.post("/stores", json={"name": "Shop", "address": "Seoul", "phoneNumber": "010-0000-0000"},
                      headers=headers)
    assert res.status_code == 201, res.text
    return {"user": user, "headers": headers, "store": res.json()}


@pytest.fixture
def make_product(client, seller):
    def _make(name="Tee", price=10000, stocks=None, **extra):
        body = {
            "name": name,
            "price": price,
            "categoryName": "top",
            "stocks": stocks if stocks is not None else [{"size": "M", "quantity": 5}],
        }
        body.update(extra)
        res = client.post("/products", json=body, headers=seller["headers"])
        assert res.status_code == 201, res.text
        return res.json()

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


def order_body(product_id, size="M", quantity=1, use_point=0):
    return {
        "name": "Kim",
        "phone": "010-1234-5678",
        "address": "Seoul",
        "orderItems": [{"productId": product_id, "size": size, "quantity": quantity}],
        "usePoint": use_point,
    }
