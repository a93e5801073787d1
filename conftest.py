import itertools
import os

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

TEST_DATABASE_URL = "sqlite:///./jobconnect-test.db"

# Must be set before settings are first read
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

# Import app and DB dependency function first
from main import app, get_db

# Import database components needed for setup
import crud
import models
import schemas
from auth import Principal
from database import Base, set_sqlite_pragma
from tokens import get_token_service

test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
event.listen(test_engine, "connect", set_sqlite_pragma)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _remove_db_files(db_path: str) -> None:
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models once per run."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    _remove_db_files(db_path)
    Base.metadata.create_all(bind=test_engine)

    yield  # Tests run here

    test_engine.dispose()
    _remove_db_files(db_path)


@pytest.fixture(autouse=True)
def clean_tables(setup_test_database):
    """Every test starts from empty tables plus the default categories."""
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    session = TestSessionLocal()
    try:
        crud.seed_categories(session)
    finally:
        session.close()
    yield


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def override_get_db():
    """Point the get_db dependency at the test database, one session per call."""

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session.

    Not used as a context manager, so the startup lifespan does not run.
    """
    return TestClient(app)


@pytest.fixture
def register_user(test_client):
    """Register through the API; returns id, email, token and auth headers."""
    numbers = itertools.count(1)

    def _register(role: str = "job_seeker", name: str = None, password: str = "secret123"):
        n = next(numbers)
        email = f"{role}{n}@example.com"
        resp = test_client.post(
            "/api/auth/register",
            json={"name": name or f"{role} {n}", "email": email, "password": password, "role": role},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return {
            "id": body["user"]["id"],
            "email": email,
            "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"},
        }

    return _register


@pytest.fixture
def admin_user(db_session):
    admin = crud.ensure_admin(db_session, "admin@example.com", "adminpass")
    token = get_token_service().issue(admin.id, admin.email, admin.role)
    return {
        "id": admin.id,
        "email": admin.email,
        "token": token,
        "headers": {"Authorization": f"Bearer {token}"},
    }


@pytest.fixture
def employer(test_client, register_user):
    """An employer who already owns a company."""
    user = register_user("employer")
    resp = test_client.post(
        "/api/employer/company",
        json={"name": "Acme Corp", "location": "Remote"},
        headers=user["headers"],
    )
    assert resp.status_code == 201, resp.text
    user["company_id"] = resp.json()["id"]
    return user


@pytest.fixture
def category_id(db_session):
    return db_session.query(models.Category).filter(models.Category.slug == "photography").one().id


@pytest.fixture
def make_user(db_session):
    """Create a user straight through the store; returns its Principal."""

    def _make(email: str, role: models.Role = models.Role.CREATIVE) -> Principal:
        user = crud.create_user(
            db_session,
            schemas.RegisterRequest(name=email.split("@")[0], email=email, password="secret123", role=role),
        )
        return Principal(id=user.id, email=user.email, role=user.role)

    return _make


@pytest.fixture
def make_project(db_session, category_id):
    def _make(owner, title: str = "Portrait") -> models.Project:
        return crud.create_project(
            db_session,
            owner,
            schemas.ProjectCreate(
                title=title,
                description="A study in light",
                category_id=category_id,
                tags="bw,film",
                image_urls=["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"],
            ),
        )

    return _make
