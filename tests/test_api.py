import importlib

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def api_module(db_file):
    # Reload api so its module-level services use the test-specific DB
    import api as api_module
    return importlib.reload(api_module)


@pytest.fixture
def client(api_module):
    with TestClient(api_module.app) as test_client:
        yield test_client


def _login(client, username, password):
    response = client.post("/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def librarian(client):
    return _login(client, "librarian", "librarian123")


@pytest.fixture
def reader(client):
    response = client.post("/register", json={"username": "reader", "email": "reader@example.com", "password": "secret1"})
    assert response.status_code == 201
    return _login(client, "reader", "secret1")


def _add_book(client, headers, **fields):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "9780441172719", "totalCopies": 1}
    payload.update(fields)
    response = client.post("/books", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["bookId"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


def test_register(client):
    response = client.post("/register", json={"username": "reader", "email": "reader@example.com", "password": "secret1"})
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "User registered successfully"
    assert isinstance(body["userId"], int)

    duplicate = client.post("/register", json={"username": "reader", "email": "x@example.com", "password": "secret1"})
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Username or email already exists"


def test_register_validation(client):
    response = client.post("/register", json={"username": "ab", "email": "nope", "password": "123"})
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert fields == {"username", "email", "password"}

    missing = client.post("/register", json={"username": "reader"})
    assert missing.status_code == 400
    assert "errors" in missing.json()


def test_login(client, reader):
    response = client.post("/login", json={"username": "reader", "password": "secret1"})
    body = response.json()
    assert body["user"]["username"] == "reader"
    assert body["user"]["role"] == "borrower"

    bad = client.post("/login", json={"username": "reader", "password": "wrong1"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid credentials"


def test_me(client, reader):
    response = client.get("/me", headers=reader)
    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "reader"
    assert body["email"] == "reader@example.com"
    assert "passwordHash" not in body


def test_protected_routes_need_a_token(client):
    response = client.post("/borrow", json={"bookId": 1})
    assert response.status_code == 401
    assert response.json()["message"] == "Access token required"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.parametrize("authorization", [b"Bearer not-a-token", b"Bearer abc.def", "Bearer abc.déf".encode("utf-8")])
def test_invalid_token_is_forbidden(client, authorization):
    response = client.get("/borrowings", headers={"Authorization": authorization})
    assert response.status_code == 403
    assert response.json()["message"] == "Invalid token"


def test_catalog_writes_need_librarian(client, reader):
    response = client.post("/books", headers=reader, json={"title": "T", "author": "A", "isbn": "1"})
    assert response.status_code == 403
    assert response.json()["message"] == "Librarian access required"
    assert client.get("/dashboard-stats", headers=reader).status_code == 403
    assert client.get("/all-borrowings", headers=reader).status_code == 403


def test_book_crud(client, librarian):
    book_id = _add_book(client, librarian, totalCopies=2, category="Science Fiction", publishedYear=1965)

    book = client.get(f"/books/{book_id}").json()
    assert book["title"] == "Dune"
    assert book["totalCopies"] == 2
    assert book["availableCopies"] == 2
    assert book["publishedYear"] == 1965
    assert book["isAvailable"] is True

    response = client.put(f"/books/{book_id}", headers=librarian, json={"title": "Dune Messiah"})
    assert response.status_code == 200
    assert response.json()["message"] == "Book updated successfully"
    assert response.json()["book"]["title"] == "Dune Messiah"

    response = client.delete(f"/books/{book_id}", headers=librarian)
    assert response.status_code == 200
    assert response.json()["message"] == "Book deleted successfully"
    assert client.get(f"/books/{book_id}").status_code == 404


def test_add_book_validation(client, librarian):
    response = client.post("/books", headers=librarian, json={"title": "", "author": "A", "isbn": "1", "totalCopies": 0})
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert {"title", "totalCopies"} <= fields


def test_duplicate_isbn(client, librarian):
    _add_book(client, librarian)
    response = client.post("/books", headers=librarian, json={"title": "Other", "author": "A", "isbn": "9780441172719"})
    assert response.status_code == 400
    assert "ISBN" in response.json()["message"]


def test_available_copies_cannot_be_set_directly(client, librarian):
    book_id = _add_book(client, librarian)
    response = client.put(f"/books/{book_id}", headers=librarian, json={"availableCopies": 5})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "availableCopies"


def test_update_missing_book(client, librarian):
    response = client.put("/books/999", headers=librarian, json={"title": "X"})
    assert response.status_code == 404
    assert response.json()["message"] == "Book not found"


def test_borrow_and_return_flow(client, librarian, reader):
    book_id = _add_book(client, librarian)

    response = client.post("/borrow", headers=reader, json={"bookId": book_id})
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Book borrowed successfully"
    assert "dueDate" in body
    assert client.get(f"/books/{book_id}").json()["availableCopies"] == 0

    again = client.post("/borrow", headers=librarian, json={"bookId": book_id})
    assert again.status_code == 400
    assert again.json()["message"] == "Book is not available for borrowing"

    [entry] = client.get("/borrowings", headers=reader).json()
    assert entry["bookId"] == book_id
    assert entry["title"] == "Dune"
    assert entry["status"] == "borrowed"
    assert entry["isOverdue"] is False
    assert entry["daysRemaining"] == 14

    stats = client.get("/dashboard-stats", headers=librarian).json()
    assert stats == {"totalBooks": 1, "totalUsers": 1, "activeBorrowings": 1, "overdueBooks": 0}

    response = client.post("/return", headers=reader, json={"bookId": book_id})
    assert response.status_code == 200
    assert response.json()["message"] == "Book returned successfully"
    assert client.get(f"/books/{book_id}").json()["availableCopies"] == 1

    response = client.post("/return", headers=reader, json={"bookId": book_id})
    assert response.status_code == 400
    assert response.json()["message"] == "You have not borrowed this book"

    [entry] = client.get("/all-borrowings", headers=librarian).json()
    assert entry["username"] == "reader"
    assert entry["status"] == "returned"


def test_borrow_twice_is_rejected(client, librarian, reader):
    book_id = _add_book(client, librarian, totalCopies=2)
    assert client.post("/borrow", headers=reader, json={"bookId": book_id}).status_code == 201

    response = client.post("/borrow", headers=reader, json={"bookId": book_id})
    assert response.status_code == 400
    assert response.json()["message"] == "You have already borrowed this book"


def test_borrow_unknown_book(client, reader):
    response = client.post("/borrow", headers=reader, json={"bookId": 4242})
    assert response.status_code == 404


def test_delete_book_on_loan(client, librarian, reader):
    book_id = _add_book(client, librarian)
    client.post("/borrow", headers=reader, json={"bookId": book_id})

    response = client.delete(f"/books/{book_id}", headers=librarian)
    assert response.status_code == 200
    assert client.get(f"/books/{book_id}").status_code == 404

    [entry] = client.get("/borrowings", headers=reader).json()
    assert entry["bookId"] == book_id
    assert entry["title"] is None
    assert client.post("/return", headers=reader, json={"bookId": book_id}).status_code == 200


def test_ids_beyond_integer_range_are_not_found(client, librarian, reader):
    huge = 10 ** 20
    assert client.get(f"/books/{huge}").status_code == 404
    assert client.put(f"/books/{huge}", headers=librarian, json={"title": "X"}).status_code == 404
    assert client.delete(f"/books/{huge}", headers=librarian).status_code == 404


def test_all_borrowings_invalid_status(client, librarian):
    response = client.get("/all-borrowings", headers=librarian, params={"status": "lost"})
    assert response.status_code == 400
