# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared test fixtures and configuration.

Every test gets its own SQLite database file (aiosqlite) so engine, query
and HTTP tests exercise real transactions and optimistic version checks
without an external server.
"""

import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# ==== FORCE ENVIRONMENT SETUP BEFORE ANY IMPORTS ==== #

# Set environment variables BEFORE importing any claimflow modules
os.environ.update({
    "APP_ENV": "test",
    "DATABASE_URL": "sqlite+aiosqlite:///./claimflow-test.db",
    "JWT_SECRET": "test-secret-key-for-testing-only",
    "LOG_LEVEL": "WARNING",
})

# Now import claimflow modules after environment is set
from claimflow.services.claim_queries import ClaimQueries
from claimflow.services.workflow_engine import WorkflowEngine
from claimflow.storage import db as storage_db
from claimflow.storage.claims import IdentityDirectory
from tests.factories.identity_factories import FrozenClock, build_org


# ==== DATABASE FIXTURES ==== #


@pytest_asyncio.fixture
async def database(tmp_path):
    """
    Fresh database with the claimflow schema.

    Resets the module-level engine so each test is bound to its own file.

    Returns:
        async_sessionmaker: Session factory for the test database
    """
    await storage_db.close_database()
    storage_db.init_database(f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}")
    await storage_db.create_schema()

    yield storage_db.get_session_factory()

    await storage_db.close_database()


@pytest.fixture
def clock():
    """Deterministic clock starting at 2025-08-16 10:00 UTC."""
    return FrozenClock()


@pytest.fixture
def org():
    """Two managers, their reports, a finance clerk and an admin."""
    return build_org()


@pytest.fixture
def directory():
    return IdentityDirectory()


@pytest_asyncio.fixture
async def known_org(database, org, directory, clock):
    """Organisation with every identity already recorded in the directory."""
    async with database() as db:
        async with db.begin():
            for identity in vars(org).values():
                await directory.sync(db, identity, clock())
    return org


# ==== SERVICE FIXTURES ==== #


@pytest.fixture
def workflow(database, directory, clock):
    """Workflow engine bound to the test database and frozen clock."""
    return WorkflowEngine(session_factory=database, directory=directory, clock=clock)


@pytest.fixture
def queries(database, directory):
    return ClaimQueries(session_factory=database, directory=directory)


# ==== APPLICATION FIXTURES ==== #


@pytest_asyncio.fixture
async def app(database):
    """
    FastAPI application bound to the test database.

    The ASGI transport does not run the lifespan, so the ``database``
    fixture provides the initialized engine instead.
    """
    from claimflow.main import create_app
    return create_app()


@pytest_asyncio.fixture
async def client(app):
    """
    Create test client.

    Returns:
        AsyncClient: HTTP test client instance
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
