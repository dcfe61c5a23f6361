"""
Pytest fixtures for Nexile backend tests.

Points the settings at a throwaway SQLite database before any application
module is imported, then drives the app through FastAPI's TestClient.
"""

import asyncio
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="nexile-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.sqlite')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["AI_API_KEY"] = ""
os.environ["APP_TIMEZONE"] = "UTC"

import pytest
from fastapi.testclient import TestClient

from database import Base, engine, async_session_maker
from main import app as fastapi_app
from seed_demo_data import seed_demo_records


def run(coro):
    """Run a coroutine to completion from synchronous test code."""
    return asyncio.run(coro)


async def _clear_tables():
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


async def _seed():
    async with async_session_maker() as db:
        await seed_demo_records(db)


@pytest.fixture(scope="session")
def client():
    """Test client; entering it runs the startup hook (tables are created)."""
    with TestClient(fastapi_app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def clean_db(client):
    """Empty every table before each test."""
    run(_clear_tables())
    yield


@pytest.fixture
def demo_data(clean_db):
    """
    Demo branches b1-b3, products p1-p4 in b1, users owner/john/sarah
    (password "password"; sarah manages b1 and b2) and two sales.
    """
    run(_seed())


def login_headers(client, email, role, password="password", access_code=None):
    response = client.post("/auth/login", json={
        "email": email,
        "password": password,
        "role": role,
        "access_code": access_code,
    })
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def owner_headers(client, demo_data):
    return login_headers(client, "owner@nexile.com", "OWNER")


@pytest.fixture
def pharmacist_headers(client, demo_data):
    return login_headers(client, "john@nexile.com", "PHARMACIST")


@pytest.fixture
def manager_headers(client, demo_data):
    return login_headers(client, "sarah@nexile.com", "MANAGER", access_code="123456")
