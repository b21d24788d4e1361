"""HTTP client for the library API, one method per endpoint."""

import logging

import requests

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code, message):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class LibraryClient:
    def __init__(self, base_url="http://localhost:3000/api", token=None, timeout=10, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, path, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if not resp.ok:
            try:
                message = resp.json().get("message", resp.reason)
            except ValueError:
                message = resp.text or resp.reason
            logger.debug("%s %s -> %s %s", method, url, resp.status_code, message)
            raise ApiError(resp.status_code, message)
        if not resp.content:
            return None
        return resp.json()

    # ----------------- auth -----------------

    def register(self, email, password, name):
        data = self._request("POST", "/auth/register", json={
            "email": email, "password": password, "name": name,
        })
        self.token = data["access_token"]
        return data

    def login(self, email, password):
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["access_token"]
        return data

    def profile(self):
        return self._request("GET", "/auth/profile")

    # ----------------- books -----------------

    def list_books(self, author_id=None, available=None, search=None, page=1, limit=10):
        """Return the paginated ``{data, meta}`` payload."""
        params = {"page": page, "limit": limit}
        if author_id is not None:
            params["authorId"] = author_id
        if available is not None:
            params["available"] = "true" if available else "false"
        if search:
            params["search"] = search
        return self._request("GET", "/books", params=params)

    def get_book(self, book_id):
        return self._request("GET", f"/books/{book_id}")

    def create_book(self, title, isbn, author_id, quantity):
        return self._request("POST", "/books", json={
            "title": title, "isbn": isbn, "authorId": author_id, "quantity": quantity,
        })

    def update_book(self, book_id, **changes):
        return self._request("PATCH", f"/books/{book_id}", json=changes)

    def delete_book(self, book_id):
        return self._request("DELETE", f"/books/{book_id}")

    # ----------------- authors -----------------

    def list_authors(self):
        return self._request("GET", "/authors")

    def get_author(self, author_id):
        return self._request("GET", f"/authors/{author_id}")

    def create_author(self, name, bio=None):
        payload = {"name": name}
        if bio is not None:
            payload["bio"] = bio
        return self._request("POST", "/authors", json=payload)

    def update_author(self, author_id, **changes):
        return self._request("PATCH", f"/authors/{author_id}", json=changes)

    def delete_author(self, author_id):
        return self._request("DELETE", f"/authors/{author_id}")

    # ----------------- users -----------------

    def list_users(self):
        return self._request("GET", "/users")

    def get_user(self, user_id):
        return self._request("GET", f"/users/{user_id}")

    # ----------------- borrowings -----------------

    def borrow(self, book_id):
        return self._request("POST", "/borrowings", json={"bookId": book_id})

    def return_borrowing(self, borrowing_id):
        return self._request("PATCH", f"/borrowings/{borrowing_id}/return")

    def my_borrowings(self):
        return self._request("GET", "/borrowings/my")

    def all_borrowings(self):
        return self._request("GET", "/borrowings")

    def get_borrowing(self, borrowing_id):
        return self._request("GET", f"/borrowings/{borrowing_id}")
