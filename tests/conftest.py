import os

from cryptography.fernet import Fernet

os.environ["ENV"] = "test"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
for _var in ("PUBLIC_BASE_URL", "SMTP_HOST"):
    os.environ.pop(_var, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.config import get_settings  # noqa: E402
from app.core.registry import build_connector_registry  # noqa: E402
from app.db import Base, enable_sqlite_foreign_keys, get_db  # noqa: E402
from app.main import create_app  # noqa: E402

pytest_plugins = [
    "tests.fixtures.channel_fixtures",
    "tests.fixtures.conversation_fixtures",
]


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Fresh in-memory database per test."""
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def registry(settings):
    return build_connector_registry(settings)


@pytest.fixture
def client(db, registry):
    """TestClient with the db dependency pointed at the test session."""
    app = create_app(testing=True, registry=registry)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
