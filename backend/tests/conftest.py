import os
import tempfile
from pathlib import Path

# Must be set before app.db.session builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="banner-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret"

import pytest

from app.core.security import create_access_token
from app.db.init_db import create_tables
from app.db.session import SessionLocal, engine
from app.models.base import Base


@pytest.fixture(scope="session", autouse=True)
def _schema():
    create_tables()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def auth_headers(*roles: str, sub: str = "admin-1") -> dict:
    token = create_access_token(subject=sub, roles=list(roles))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_headers("admin", sub="admin-1")


@pytest.fixture
def manager_headers():
    return auth_headers("manager", sub="manager-1")


@pytest.fixture
def user_headers():
    return auth_headers("user", sub="user-1")
