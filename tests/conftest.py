import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from main import app, get_session


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def client(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def group_abc(client):
    """A GBP group with users Alice, Bob and Carol. Returns (group_id, [a, b, c])."""
    ids = []
    for name in ("Alice", "Bob", "Carol"):
        r = client.post("/users", json={"name": name, "payment_info": f"{name.lower()}@bank"})
        assert r.status_code == 200
        ids.append(r.json()["id"])
    r = client.post("/groups", json={"name": "Trip", "currency": "GBP"})
    assert r.status_code == 201
    group_id = r.json()["id"]
    for uid in ids:
        assert client.post(f"/groups/{group_id}/members", json={"user_id": uid}).json() == {"status": "joined"}
    return group_id, ids
