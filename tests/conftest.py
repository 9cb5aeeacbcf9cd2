"""
Pytest configuration and fixtures for the session engine tests.
"""
import sys
import os
import pytest
import pytest_asyncio

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import build_engine, build_session_factory, init_models
from models.identity import SessionIdentity, ExamKind, Semester
from services.session_store import SessionStore
from services.session_service import SessionService


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = build_engine(database_url, echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return SessionStore(session_factory)


@pytest_asyncio.fixture
async def service(store):
    """Service whose timers never tick during a test."""
    service = SessionService(store=store, tick_seconds=3600)
    yield service
    for live in service.live_sessions:
        await service.close(live)


@pytest.fixture
def quant_2024_fall():
    return SessionIdentity(
        test_kind=ExamKind.QUANT,
        pass_number=1,
        historical_year="2024",
        historical_semester=Semester.FALL,
    )


@pytest.fixture
def verbal_generated():
    return SessionIdentity(test_kind=ExamKind.VERBAL, pass_number=0)


@pytest.fixture
def quant_generated():
    return SessionIdentity(test_kind=ExamKind.QUANT, pass_number=0)
