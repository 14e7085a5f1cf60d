import importlib

import httpx
import pytest
from fastapi.testclient import TestClient

from client import ApiError, LibraryClient


@pytest.fixture
def api_client(db_file):
    import api as api_module
    api_module = importlib.reload(api_module)
    with TestClient(api_module.app) as http:
        yield LibraryClient(http=http)


def test_login_stores_token(api_client):
    data = api_client.login("librarian", "librarian123")
    assert api_client.token == data["token"]
    assert api_client.user["role"] == "librarian"
    assert api_client.me()["username"] == "librarian"

    api_client.logout()
    assert api_client.token is None


def test_librarian_and_borrower_workflow(api_client):
    api_client.login("librarian", "librarian123")
    book_id = api_client.create_book(title="Emma", author="Jane Austen", isbn="9780141439587", totalCopies=2)["bookId"]
    api_client.update_book(book_id, category="Fiction")
    assert api_client.get_book(book_id)["category"] == "Fiction"
    api_client.logout()

    api_client.register("reader", "reader@example.com", "secret1")
    api_client.login("reader", "secret1")
    api_client.borrow(book_id)
    assert [b["title"] for b in api_client.my_borrowings()] == ["Emma"]
    assert api_client.list_books(available=True)[0]["availableCopies"] == 1
    api_client.return_book(book_id)
    assert api_client.my_borrowings()[0]["status"] == "returned"


def test_error_carries_message_and_field_errors(api_client):
    with pytest.raises(ApiError) as excinfo:
        api_client.register("ab", "bad", "1")
    assert excinfo.value.status_code == 400
    assert {e["field"] for e in excinfo.value.errors} == {"username", "email", "password"}


def test_forbidden_response_discards_token(api_client):
    api_client.register("reader", "reader@example.com", "secret1")
    api_client.login("reader", "secret1")

    with pytest.raises(ApiError) as excinfo:
        api_client.dashboard_stats()

    assert excinfo.value.status_code == 403
    assert excinfo.value.is_auth_error
    assert api_client.token is None


def test_connection_failure_raises_api_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.Client(base_url="http://library.invalid", transport=httpx.MockTransport(refuse))
    with LibraryClient(http=http) as client:
        with pytest.raises(ApiError) as excinfo:
            client.list_books()
    assert excinfo.value.status_code is None
    assert "not responding" in excinfo.value.message
    http.close()
