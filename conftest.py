import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dualcast.main import app
from dualcast.core.config import settings
from dualcast.db.session import get_db
from dualcast.models import Base
from dualcast.schemas.publish_job import ProviderConfig
from dualcast.services.publishing.broadcaster import ProgressBroadcaster
from dualcast.services.publishing.job_store import JobStore

# Test database URL
TEST_DATABASE_URL = "sqlite://"

# Create test engine
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database."""
    return TestingSessionLocal


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster()


@pytest.fixture(autouse=True)
def temp_media_dirs(tmp_path, monkeypatch):
    """Keep uploads and renditions inside the test's temp directory."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "PROCESSED_DIR", str(tmp_path / "processed"))
    return tmp_path


@pytest.fixture
def provider_payload():
    """Per-field provider config as a client sends it."""
    return {
        field: {"provider": "openai", "model": "gpt-4o-mini", "apiKey": "sk-test"}
        for field in ("title", "description", "keywords", "hashtags")
    }


@pytest.fixture
def provider_config(provider_payload):
    return ProviderConfig(**provider_payload)


class RecordingRunner:
    """Stands in for JobRunner so API tests never start the pipeline."""

    def __init__(self):
        self.submitted = []

    def submit(self, job_id, provider_config=None):
        self.submitted.append((job_id, provider_config))


@pytest.fixture
def job_runner():
    return RecordingRunner()


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """Override the get_db dependency to use test database."""
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def test_app(override_get_db, job_store, broadcaster, job_runner):
    """The application with the state its lifespan would normally build."""
    app.state.job_store = job_store
    app.state.broadcaster = broadcaster
    app.state.job_runner = job_runner
    return app


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def owner_headers():
    return {"X-Owner-Id": "owner-1"}
