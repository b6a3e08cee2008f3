import pytest

from relay.messaging.router import MessageRouter
from relay.server.app import create_app
from relay.server.settings import RelayServerSettings
from relay.session.manager import SessionManager
from relay.tests.mocks import FakeClock, MockConnection


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_manager(clock):
    return SessionManager(grace_seconds=300, ttl_seconds=3600, heartbeat_timeout=60, clock=clock)


@pytest.fixture
def message_router(session_manager):
    return MessageRouter(session_manager)


@pytest.fixture
def mock_connection():
    return MockConnection()


@pytest.fixture
def settings():
    return RelayServerSettings(cors_origins=["http://localhost:3000"])


@pytest.fixture
def app(settings, session_manager, message_router):
    return create_app(settings=settings, session_manager=session_manager, message_router=message_router)
