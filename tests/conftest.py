# tests/conftest.py
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from dealer_api import auth, main


def as_role(role: str, user_id: str = "u1", dealer_id: str = "d1") -> dict:
    """Trusted gateway headers for a caller with the given role."""
    return {"X-User-Id": user_id, "X-User-Role": role, "X-Dealer-Id": dealer_id}


STAFF = as_role(auth.DEALER_STAFF)
MANAGER = as_role(auth.DEALER_MANAGER, user_id="m1")
ADMIN = as_role(auth.ADMIN, user_id="a1")
EVM = as_role(auth.EVM_STAFF, user_id="e1")


@pytest.fixture(autouse=True)
def no_dev_identity(mocker) -> None:
    """Tests opt in to the dev identity explicitly."""
    mocker.patch.object(auth, "ALLOW_DEV_IDENTITY", False)
    mocker.patch.object(auth, "AUTH_URL", "")


@pytest.fixture
def session_factory(tmp_path, mocker):
    """Fresh SQLite file per test, swapped in for the app's engine + session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dealer-test.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    mocker.patch.object(main, "engine", engine)
    mocker.patch.object(main, "SessionLocal", factory)
    return factory


@pytest.fixture
def client(session_factory):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def run_db(session_factory):
    """Run `fn(db)` against the test database outside the request cycle."""
    def _run(fn):
        async def _go():
            async with session_factory() as db:
                return await fn(db)
        return asyncio.run(_go())
    return _run


@pytest.fixture
def customer(client) -> dict:
    r = client.post("/customers", json={"name": "Alice", "phone": "555-0100"}, headers=STAFF)
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def make_order(client, customer):
    def _make(items, headers=STAFF, **extra):
        body = {"dealerId": "d1", "customerId": customer["id"], "items": items, **extra}
        r = client.post("/orders", json=body, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()
    return _make
