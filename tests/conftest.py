"""Test fixtures and configuration."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

import transfer_recon.models  # noqa: F401
from transfer_recon.database import Base, create_session_maker
from transfer_recon.services.fx import CurrencyConverter, RateCache
from transfer_recon.services.storage import TransactionStore
from transfer_recon.services.transfer_service import TransferMatchingService


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


@pytest.fixture
def store(session_maker):
    return TransactionStore(session_maker)


@pytest.fixture
def rate_cache():
    return RateCache()


@pytest.fixture
def service(store, rate_cache):
    """Service with an offline converter: only cached rates are available."""
    return TransferMatchingService(store, CurrencyConverter(cache=rate_cache), base_currency="USD")


@pytest_asyncio.fixture
async def client(service):
    from transfer_recon.deps import get_transfer_service
    from transfer_recon.main import app

    app.dependency_overrides[get_transfer_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
