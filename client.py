"""HTTP client for the lending library API.

Mirrors the web and mobile clients: log in once, keep the bearer token and
send it on every request. Non-2xx responses and transport failures raise
``ApiError``.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: Optional[int], message: str, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []

    @property
    def is_auth_error(self) -> bool:
        """401/403 mean the stored token should be discarded and the user sent back to login."""
        return self.status_code in (401, 403)


class LibraryClient:
    """Synchronous client; pass ``http`` to reuse an existing httpx.Client (or a TestClient)."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, http: Optional[httpx.Client] = None) -> None:
        self.token = token
        self.user: Optional[Dict[str, Any]] = None
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=base_url or settings.client_base_url,
            timeout=httpx.Timeout(timeout or settings.client_timeout, connect=5.0),
            headers={"Content-Type": "application/json"},
        )
        self._prefix = settings.api_prefix

    def __enter__(self) -> "LibraryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # ------------------------- Transport ------------------------- #
    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self._http.request(method, self._prefix + path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiError(None, "Unable to connect to server. Please check your connection and try again.") from exc
        except httpx.RequestError as exc:
            raise ApiError(None, "Server is not responding. Please make sure the backend server is running.") from exc

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        error = ApiError(response.status_code, body.get("message") or response.reason_phrase, body.get("errors"))
        if error.is_auth_error:
            logger.debug("Discarding token after %s response", response.status_code)
            self.token = None
        raise error

    # ------------------------- Auth ------------------------- #
    def register(self, username: str, email: str, password: str) -> Dict[str, Any]:
        return self._request("POST", "/register", json={"username": username, "email": email, "password": password})

    def login(self, username: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/login", json={"username": username, "password": password})
        self.token = data["token"]
        self.user = data["user"]
        return data

    def logout(self) -> None:
        self.token = None
        self.user = None

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/me")

    # ------------------------- Books ------------------------- #
    def list_books(self, q: Optional[str] = None, category: Optional[str] = None,
                   available: bool = False) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if q:
            params["q"] = q
        if category:
            params["category"] = category
        if available:
            params["available"] = "true"
        return self._request("GET", "/books", params=params)

    def get_book(self, book_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/books/{book_id}")

    def create_book(self, **fields: Any) -> Dict[str, Any]:
        return self._request("POST", "/books", json=fields)

    def update_book(self, book_id: int, **fields: Any) -> Dict[str, Any]:
        return self._request("PUT", f"/books/{book_id}", json=fields)

    def delete_book(self, book_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/books/{book_id}")

    # ------------------------- Borrowings ------------------------- #
    def borrow(self, book_id: int) -> Dict[str, Any]:
        return self._request("POST", "/borrow", json={"bookId": book_id})

    def return_book(self, book_id: int) -> Dict[str, Any]:
        return self._request("POST", "/return", json={"bookId": book_id})

    def my_borrowings(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/borrowings")

    def all_borrowings(self, status: Optional[str] = None, overdue: bool = False) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if status:
            params["status"] = status
        if overdue:
            params["overdue"] = "true"
        return self._request("GET", "/all-borrowings", params=params)

    def dashboard_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/dashboard-stats")
