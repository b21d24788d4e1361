import random
from datetime import datetime, timedelta

from sqlalchemy import update

from conftest import auth_header, create_book, register
from library_service import services
from library_service.db import SessionLocal
from library_service.models import STATUS_RETURNED, Book, Borrowing, utcnow


def borrow(client, token, book_id):
    return client.post("/api/borrowings", json={"bookId": book_id}, headers=auth_header(token))


def give_back(client, token, borrowing_id):
    return client.patch(f"/api/borrowings/{borrowing_id}/return", headers=auth_header(token))


def available_qty(client, book_id):
    return client.get(f"/api/books/{book_id}").get_json()["availableQty"]


def test_borrow_book(client, user_token, book):
    response = borrow(client, user_token, book["id"])
    assert response.status_code == 201
    body = response.get_json()
    assert body["status"] == "BORROWED"
    assert body["book"]["id"] == book["id"]
    assert body["returnDate"] is None
    assert body["user"]["name"] == "Reader"

    borrowed = datetime.fromisoformat(body["borrowDate"])
    due = datetime.fromisoformat(body["dueDate"])
    assert due - borrowed == timedelta(days=14)


def test_borrow_same_book_twice(client, user_token, book):
    borrow(client, user_token, book["id"])
    response = borrow(client, user_token, book["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "You already have an active borrowing for this book"
    assert available_qty(client, book["id"]) == 1


def test_borrow_again_after_return(client, user_token, book):
    first = borrow(client, user_token, book["id"]).get_json()
    give_back(client, user_token, first["id"])
    response = borrow(client, user_token, book["id"])
    assert response.status_code == 201


def test_borrow_unavailable_book(client, admin_token, user_token, author):
    book = create_book(client, admin_token, author["id"], quantity=1)
    other, _ = register(client, email="other@test.com")
    assert borrow(client, other, book["id"]).status_code == 201

    response = borrow(client, user_token, book["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "This book is currently not available for borrowing"
    assert available_qty(client, book["id"]) == 0


def test_borrow_without_authentication(client, book):
    response = client.post("/api/borrowings", json={"bookId": book["id"]})
    assert response.status_code == 401


def test_borrow_missing_book(client, user_token):
    assert borrow(client, user_token, 4242).status_code == 404


def test_borrow_requires_book_id(client, user_token):
    response = client.post("/api/borrowings", json={}, headers=auth_header(user_token))
    assert response.status_code == 400


def test_book_detail_lists_active_borrowers(client, user_token, book):
    borrow(client, user_token, book["id"])
    body = client.get(f"/api/books/{book['id']}").get_json()
    assert [b["user"]["email"] for b in body["borrowings"]] == ["reader@test.com"]


def test_return_book(client, user_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    response = give_back(client, user_token, borrowing["id"])
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "RETURNED"
    assert body["returnDate"] is not None


def test_return_twice_fails(client, user_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    give_back(client, user_token, borrowing["id"])
    response = give_back(client, user_token, borrowing["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "This book has already been returned"
    assert available_qty(client, book["id"]) == 2


def test_return_missing_borrowing(client, user_token):
    assert give_back(client, user_token, 4242).status_code == 404


def test_return_someone_elses_borrowing(client, user_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    other, _ = register(client, email="other@test.com")
    response = give_back(client, other, borrowing["id"])
    assert response.status_code == 403
    assert available_qty(client, book["id"]) == 1


def test_admin_can_return_any_borrowing(client, admin_token, user_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    response = give_back(client, admin_token, borrowing["id"])
    assert response.status_code == 200
    assert available_qty(client, book["id"]) == 2


def test_my_borrowings(client, user_token, admin_token, author, book):
    second = create_book(client, admin_token, author["id"], title="Animal Farm", isbn="222")
    other, _ = register(client, email="other@test.com")
    borrow(client, user_token, book["id"])
    borrow(client, user_token, second["id"])
    borrow(client, other, book["id"])

    response = client.get("/api/borrowings/my", headers=auth_header(user_token))
    assert response.status_code == 200
    body = response.get_json()
    assert len(body) == 2
    assert {b["book"]["title"] for b in body} == {"1984", "Animal Farm"}


def test_my_borrowings_without_authentication(client):
    assert client.get("/api/borrowings/my").status_code == 401


def test_all_borrowings_as_admin(client, admin_token, user_token, book):
    borrow(client, user_token, book["id"])
    response = client.get("/api/borrowings", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert len(response.get_json()) == 1


def test_all_borrowings_as_regular_user(client, user_token):
    response = client.get("/api/borrowings", headers=auth_header(user_token))
    assert response.status_code == 403


def test_get_borrowing(client, user_token, admin_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    mine = client.get(f"/api/borrowings/{borrowing['id']}", headers=auth_header(user_token))
    assert mine.status_code == 200
    assert mine.get_json()["id"] == borrowing["id"]

    as_admin = client.get(f"/api/borrowings/{borrowing['id']}", headers=auth_header(admin_token))
    assert as_admin.status_code == 200

    other, _ = register(client, email="other@test.com")
    theirs = client.get(f"/api/borrowings/{borrowing['id']}", headers=auth_header(other))
    assert theirs.status_code == 403

    assert client.get("/api/borrowings/4242", headers=auth_header(user_token)).status_code == 404


def test_available_qty_stays_within_bounds(client, admin_token, author):
    rng = random.Random(7)
    book = create_book(client, admin_token, author["id"], quantity=3)
    tokens = [register(client, email=f"u{i}@test.com")[0] for i in range(5)]
    open_loans = {}

    for _ in range(60):
        action = rng.choice(["borrow", "return", "update"])
        token = rng.choice(tokens)
        if action == "borrow":
            response = borrow(client, token, book["id"])
            if response.status_code == 201:
                open_loans[response.get_json()["id"]] = token
        elif action == "return" and open_loans:
            borrowing_id = rng.choice(sorted(open_loans))
            assert give_back(client, open_loans.pop(borrowing_id), borrowing_id).status_code == 200
        elif action == "update":
            client.patch(
                f"/api/books/{book['id']}",
                json={"quantity": rng.randint(1, 6)},
                headers=auth_header(admin_token),
            )

        current = client.get(f"/api/books/{book['id']}").get_json()
        assert 0 <= current["availableQty"] <= current["quantity"]
        assert len(current["borrowings"]) == len(open_loans)


def test_borrow_and_return_round_trip(client, book):
    client.post(
        "/api/auth/register",
        json={"email": "e2e@test.com", "password": "secret123", "name": "E2E"},
    )
    login = client.post("/api/auth/login", json={"email": "e2e@test.com", "password": "secret123"})
    token = login.get_json()["access_token"]

    before = available_qty(client, book["id"])
    borrowing = borrow(client, token, book["id"])
    assert borrowing.status_code == 201
    assert available_qty(client, book["id"]) == before - 1

    returned = give_back(client, token, borrowing.get_json()["id"])
    assert returned.status_code == 200
    assert available_qty(client, book["id"]) == before


def my_statuses(client, token):
    response = client.get("/api/borrowings/my", headers=auth_header(token))
    return [b["status"] for b in response.get_json()]


def test_borrow_loses_race_for_last_copy(client, admin_token, author, monkeypatch):
    book = create_book(
        client, admin_token, author["id"], title="Animal Farm", isbn="9780451526342", quantity=1
    )
    token, _ = register(client)
    _, rival = register(client, email="rival@test.com", name="Rival")
    take_copy = services._take_copy

    # another request takes the last copy between the availability check and the update
    def rival_borrows_first(session, book_id):
        session.add(Borrowing(
            user_id=rival["id"], book_id=book_id, due_date=utcnow() + timedelta(days=14)
        ))
        session.execute(update(Book).where(Book.id == book_id).values(available_qty=0))
        session.commit()
        return take_copy(session, book_id)

    monkeypatch.setattr(services, "_take_copy", rival_borrows_first)

    response = borrow(client, token, book["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "This book is currently not available for borrowing"

    detail = client.get(f"/api/books/{book['id']}").get_json()
    assert detail["availableQty"] == 0
    assert [b["user"]["email"] for b in detail["borrowings"]] == ["rival@test.com"]
    assert my_statuses(client, token) == []


def test_borrow_loses_race_to_own_concurrent_request(client, book, monkeypatch):
    token, user = register(client)
    take_copy = services._take_copy

    # the same user's other request commits its loan after the duplicate check
    def duplicate_commits_first(session, book_id):
        session.add(Borrowing(
            user_id=user["id"], book_id=book_id, due_date=utcnow() + timedelta(days=14)
        ))
        session.execute(
            update(Book).where(Book.id == book_id).values(available_qty=Book.available_qty - 1)
        )
        session.commit()
        return take_copy(session, book_id)

    monkeypatch.setattr(services, "_take_copy", duplicate_commits_first)

    response = borrow(client, token, book["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "You already have an active borrowing for this book"
    assert available_qty(client, book["id"]) == 1
    assert my_statuses(client, token) == ["BORROWED"]


def test_return_loses_race_to_concurrent_return(client, user_token, book, monkeypatch):
    borrowing = borrow(client, user_token, book["id"]).get_json()
    close_borrowing = services._close_borrowing

    # another request closes the loan between the status check and the update
    def returned_elsewhere(session, borrowing_id):
        session.execute(
            update(Borrowing)
            .where(Borrowing.id == borrowing_id)
            .values(status=STATUS_RETURNED, return_date=utcnow())
        )
        session.execute(
            update(Book).where(Book.id == book["id"]).values(available_qty=Book.available_qty + 1)
        )
        session.commit()
        return close_borrowing(session, borrowing_id)

    monkeypatch.setattr(services, "_close_borrowing", returned_elsewhere)

    response = give_back(client, user_token, borrowing["id"])
    assert response.status_code == 400
    assert response.get_json()["message"] == "This book has already been returned"
    assert available_qty(client, book["id"]) == 2
    assert my_statuses(client, user_token) == ["RETURNED"]


def test_return_onto_full_shelf_conflicts(app, client, user_token, book):
    borrowing = borrow(client, user_token, book["id"]).get_json()

    # shelf count restored behind the API's back while the copy is still out
    with app.app_context():
        session = SessionLocal()
        try:
            session.execute(
                update(Book).where(Book.id == book["id"]).values(available_qty=Book.quantity)
            )
            session.commit()
        finally:
            session.close()

    response = give_back(client, user_token, borrowing["id"])
    assert response.status_code == 409
    assert response.get_json()["message"] == "Book has no outstanding copies to return"

    current = client.get(f"/api/borrowings/{borrowing['id']}", headers=auth_header(user_token))
    assert current.get_json()["status"] == "BORROWED"
    assert available_qty(client, book["id"]) == 2
