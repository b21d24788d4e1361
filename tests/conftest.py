import pytest

from library_service.app import create_app
from library_service.auth import hash_password
from library_service.config import TestConfig
from library_service.db import SessionLocal
from library_service.models import ROLE_ADMIN, User

ADMIN_EMAIL = "admin@test.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def app():
    # Fresh in-memory database per test
    app = create_app(TestConfig)
    yield app
    app.extensions["db_engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, email="reader@test.com", password="secret123", name="Reader"):
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": name},
    )
    assert response.status_code == 201, response.get_json()
    body = response.get_json()
    return body["access_token"], body["user"]


@pytest.fixture
def admin_token(app, client):
    with app.app_context():
        session = SessionLocal()
        try:
            session.add(User(
                email=ADMIN_EMAIL,
                password=hash_password(ADMIN_PASSWORD),
                name="Admin",
                role=ROLE_ADMIN,
            ))
            session.commit()
        finally:
            session.close()

    response = client.post(
        "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return response.get_json()["access_token"]


@pytest.fixture
def user_token(client):
    token, _ = register(client)
    return token


@pytest.fixture
def author(client, admin_token):
    response = client.post(
        "/api/authors",
        json={"name": "George Orwell", "bio": "English novelist"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    return response.get_json()


def create_book(client, admin_token, author_id, title="1984", isbn="9780451524935", quantity=2):
    response = client.post(
        "/api/books",
        json={"title": title, "isbn": isbn, "authorId": author_id, "quantity": quantity},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()


@pytest.fixture
def book(client, admin_token, author):
    return create_book(client, admin_token, author["id"])
