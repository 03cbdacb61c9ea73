"""
Test configuration and fixtures.

The environment is set before anything from library_app is imported:
settings, the engine and the password context are built at import time.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "library_app_test.db")
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from library_app.main import app
from library_app.core.database import Base, SessionLocal, engine
from library_app.core.security import get_password_hash
from library_app.models.catalog import Book
from library_app.models.patron import Patron
from library_app.models.user import User, UserRole

DEFAULT_PASSWORD = "secret1"


@pytest.fixture(autouse=True)
def setup_database():
    """Fresh schema for every test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(username="student1", password=DEFAULT_PASSWORD, role=UserRole.STUDENT, full_name=None):
        user = User(
            username=username,
            password_hash=get_password_hash(password),
            full_name=full_name or username.title(),
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_book(db):
    def _make(title="Dune", total_copies=1, available_copies=None):
        book = Book(
            title=title,
            total_copies=total_copies,
            available_copies=total_copies if available_copies is None else available_copies,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make


@pytest.fixture
def make_patron(db):
    counter = {"n": 0}

    def _make(full_name="Reader", max_books=5, status="Active", email=None):
        counter["n"] += 1
        patron = Patron(
            patron_code=f"PTEST{counter['n']}",
            full_name=full_name,
            email=email or f"reader{counter['n']}@example.org",
            status=status,
            max_books=max_books,
        )
        db.add(patron)
        db.commit()
        db.refresh(patron)
        return patron
    return _make


@pytest.fixture
def login(client):
    """Log in through the API and return the session token"""
    def _login(username, password=DEFAULT_PASSWORD):
        response = client.post("/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _login


@pytest.fixture
def auth_headers(login):
    """Authorization header for a freshly logged-in user"""
    def _headers(username, password=DEFAULT_PASSWORD):
        return {"Authorization": f"Bearer {login(username, password)}"}
    return _headers
