import os
import importlib
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from models import Role, utc_today

PASSWORD = "Passw0rdOK"


@pytest.fixture
def api_module(tmp_path, request):
    # Create a unique per-test DB and ensure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    os.environ["LIBRARY_DB_FILE"] = db_file

    import api as module
    # Reload api so its global Library() instance uses the test-specific DB
    importlib.reload(module)
    try:
        yield module
    finally:
        os.environ.pop("LIBRARY_DB_FILE", None)


@pytest.fixture
def client(api_module):
    with TestClient(api_module.app) as test_client:
        yield test_client


def _login(client, username):
    response = client.post("/users/login", json={"username": username, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture
def staff(api_module, client):
    users = api_module.library.users
    users.create_user("senior", PASSWORD, Role.SENIOR_STAFF)
    users.create_user("junior", PASSWORD, Role.JUNIOR_STAFF)
    return {"senior": _login(client, "senior"), "junior": _login(client, "junior")}


@pytest.fixture
def patron(client):
    response = client.post("/users/register", json={"username": "reader", "password": PASSWORD})
    assert response.status_code == 201
    user = response.json()
    headers = _login(client, "reader")
    borrower = client.post("/api/borrowers", headers=headers, json={
        "userId": user["id"], "name": "Rea Der", "email": "reader@example.com", "phone": "+15551234567",
    })
    assert borrower.status_code == 201, borrower.text
    return {"user": user, "headers": headers, "borrower": borrower.json()}


@pytest.fixture
def book(client, staff):
    author = client.post("/api/authors", headers=staff["senior"], json={"name": "Ursula K. Le Guin"})
    assert author.status_code == 201
    created = client.post("/api/books", headers=staff["senior"], json={
        "title": "A Wizard of Earthsea",
        "isbn": "9780547773742",
        "publishedDate": "1968-01-01",
        "authorIds": [author.json()["id"]],
    })
    assert created.status_code == 201, created.text
    return created.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_register_and_login(client):
    response = client.post("/users/register", json={"username": "reader", "password": PASSWORD, "role": "SeniorStaff"})
    assert response.status_code == 201
    assert response.json()["role"] is None

    login = client.post("/users/login", json={"username": "reader", "password": PASSWORD})
    assert login.status_code == 200
    assert login.json()["tokenType"] == "Bearer"


def test_login_with_wrong_password(client):
    client.post("/users/register", json={"username": "reader", "password": PASSWORD})
    response = client.post("/users/login", json={"username": "reader", "password": "WrongPass1"})
    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_register_validation_problem(client):
    response = client.post("/users/register", json={"username": "ab", "password": "weak"})
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == 400
    assert body["instance"] == "/users/register"
    assert set(body["errors"]) == {"username", "password"}


def test_create_author_without_credentials_is_unauthorized_before_validation(client):
    response = client.post("/api/authors", json={"bio": "x" * 5000})
    assert response.status_code == 401
    assert "errors" not in response.json()


def test_create_author_with_invalid_token(client):
    response = client.post("/api/authors", headers={"Authorization": "Bearer not-a-jwt"}, json={"name": "A"})
    assert response.status_code == 401


def test_junior_staff_cannot_delete_books(client, staff, book):
    response = client.delete(f"/api/books/{book['id']}", headers=staff["junior"])
    assert response.status_code == 403
    assert client.get(f"/api/books/{book['id']}").status_code == 200


def test_patron_cannot_list_loans(client, patron):
    assert client.get("/api/loans", headers=patron["headers"]).status_code == 403


def test_catalog_is_public(client, book):
    listed = client.get("/api/books")
    assert listed.status_code == 200
    assert [b["id"] for b in listed.json()] == [book["id"]]
    assert listed.json()[0]["authorIds"] == book["authorIds"]

    author = client.get(f"/api/authors/{book['authorIds'][0]}")
    assert author.json()["bookIds"] == [book["id"]]


def test_book_validation_errors(client, staff):
    response = client.post("/api/books", headers=staff["senior"], json={
        "title": "T", "isbn": "12345", "publishedDate": "2000-01-01", "authorIds": [],
    })
    assert response.status_code == 400
    assert set(response.json()["errors"]) == {"isbn", "authorIds"}


def test_book_with_unknown_author_is_not_found(client, staff):
    response = client.post("/api/books", headers=staff["senior"], json={
        "title": "T", "isbn": "9780547773742", "publishedDate": "2000-01-01", "authorIds": ["ghost"],
    })
    assert response.status_code == 404
    assert response.json()["title"] == "Resource Not Found"


def test_loan_lifecycle_over_http(client, staff, patron, book):
    payload = {"bookId": book["id"], "borrowerId": patron["borrower"]["id"], "loanDate": "2024-01-01"}
    created = client.post("/api/loans", headers=patron["headers"], json=payload)
    assert created.status_code == 201, created.text
    loan = created.json()
    assert loan["returnDate"] is None

    clash = client.post("/api/loans", headers=patron["headers"], json={**payload, "loanDate": "2024-02-01"})
    assert clash.status_code == 409

    early = client.put(f"/api/loans/{loan['id']}", headers=patron["headers"], json={"returnDate": "2023-12-31"})
    assert early.status_code == 400
    assert "returnDate" in early.json()["errors"]

    future = (utc_today() + timedelta(days=30)).isoformat()
    late = client.put(f"/api/loans/{loan['id']}", headers=patron["headers"], json={"returnDate": future})
    assert late.status_code == 400
    assert late.json()["errors"]["returnDate"] == ["Return date cannot be in the future"]

    closed = client.put(f"/api/loans/{loan['id']}", headers=patron["headers"], json={"returnDate": "2024-01-15"})
    assert closed.status_code == 200
    assert closed.json()["returnDate"] == "2024-01-15"
    assert closed.json()["returnedAt"] is not None

    again = client.post("/api/loans", headers=patron["headers"], json={**payload, "loanDate": "2024-01-15"})
    assert again.status_code == 201

    listed = client.get("/api/loans", headers=staff["junior"])
    assert [item["id"] for item in listed.json()] == [loan["id"], again.json()["id"]]
    assert client.get(f"/api/loans/{loan['id']}", headers=staff["junior"]).json()["returnDate"] == "2024-01-15"


def test_availability_endpoint(client, patron, book):
    client.post("/api/loans", headers=patron["headers"], json={
        "bookId": book["id"], "borrowerId": patron["borrower"]["id"],
        "loanDate": "2024-01-01", "returnDate": "2024-01-10",
    })

    busy = client.get(f"/api/books/{book['id']}/availability", params={"start": "2024-01-05", "end": "2024-01-12"})
    assert busy.status_code == 200
    assert busy.json() == {"bookId": book["id"], "start": "2024-01-05", "end": "2024-01-12", "available": False}

    free = client.get(f"/api/books/{book['id']}/availability", params={"start": "2024-01-10"})
    assert free.json()["available"] is True
    assert free.json()["end"] is None

    bad = client.get(f"/api/books/{book['id']}/availability", params={"start": "not-a-date"})
    assert bad.status_code == 400
    assert "start" in bad.json()["errors"]


def test_staff_cannot_register_as_borrower(client, api_module, staff):
    senior = api_module.library.users_repo.get_by_username("senior")
    response = client.post("/api/borrowers", headers=staff["senior"], json={
        "userId": senior.id, "name": "Senior", "email": "s@example.com", "phone": "+15550000000",
    })
    assert response.status_code == 401


def test_duplicate_borrower_profile(client, patron):
    response = client.post("/api/borrowers", headers=patron["headers"], json={
        "userId": patron["user"]["id"], "name": "Again", "email": "a@example.com", "phone": "+15550000000",
    })
    assert response.status_code == 409


def test_delete_author_with_books_conflicts(client, staff, book):
    response = client.delete(f"/api/authors/{book['authorIds'][0]}", headers=staff["senior"])
    assert response.status_code == 409


def test_borrower_delete_and_update(client, staff, patron):
    borrower_id = patron["borrower"]["id"]
    updated = client.put(f"/api/borrowers/{borrower_id}", headers=patron["headers"], json={"phone": "+15559999999"})
    assert updated.status_code == 200
    assert updated.json()["phone"] == "+15559999999"

    assert client.delete(f"/api/borrowers/{borrower_id}", headers=staff["junior"]).status_code == 204
    assert client.get(f"/api/borrowers/{borrower_id}", headers=staff["junior"]).status_code == 404


def test_senior_staff_manages_roles(client, staff, patron):
    user_id = patron["user"]["id"]
    assert client.get(f"/users/{user_id}", headers=staff["junior"]).status_code == 403

    promoted = client.put(f"/users/update/{user_id}", headers=staff["senior"], json={"role": "JuniorStaff"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "JuniorStaff"

    cleared = client.put(f"/users/update/{user_id}", headers=staff["senior"], json={"role": None})
    assert cleared.json()["role"] is None


def test_malformed_json_body(client, staff):
    response = client.post(
        "/api/authors",
        headers={**staff["senior"], "Content-Type": "application/json"},
        content="{not json",
    )
    assert response.status_code == 400
    assert "body" in response.json()["errors"]


def test_unexpected_errors_are_hidden(api_module, monkeypatch, staff):
    def boom():
        raise RuntimeError("database exploded")

    monkeypatch.setattr(api_module.library.loans, "list_all", boom)
    monkeypatch.setattr(api_module.settings, "environment", "production")
    monkeypatch.setattr(api_module.settings, "debug", False)
    with TestClient(api_module.app, raise_server_exceptions=False) as quiet_client:
        response = quiet_client.get("/api/loans", headers=staff["senior"])

    assert response.status_code == 500
    assert response.json()["detail"] == "An unexpected error occurred."
    assert "exploded" not in response.text


def test_loan_for_today_needs_no_return_date(client, patron, book):
    response = client.post("/api/loans", headers=patron["headers"], json={
        "bookId": book["id"], "borrowerId": patron["borrower"]["id"], "loanDate": utc_today().isoformat(),
    })
    assert response.status_code == 201


def test_patron_manages_only_own_borrower_profile(client, patron):
    other = client.post("/users/register", json={"username": "other", "password": PASSWORD}).json()
    other_headers = _login(client, "other")
    profile = {"userId": other["id"], "name": "Oth Er", "email": "other@example.com", "phone": "+15557654321"}

    taken = client.post("/api/borrowers", headers=patron["headers"], json=profile)
    assert taken.status_code == 403

    own = client.post("/api/borrowers", headers=other_headers, json=profile)
    assert own.status_code == 201, own.text

    foreign = client.put(f"/api/borrowers/{patron['borrower']['id']}", headers=other_headers, json={"name": "Mine"})
    assert foreign.status_code == 403


def test_openapi_documents_request_bodies(client):
    paths = client.get("/openapi.json").json()["paths"]

    loan_body = paths["/api/loans"]["post"]["requestBody"]
    assert loan_body["required"] is True
    assert {"bookId", "borrowerId", "loanDate", "returnDate"} <= set(loan_body["content"]["application/json"]["schema"]["properties"])

    return_body = paths["/api/loans/{loan_id}"]["put"]["requestBody"]
    assert return_body["required"] is False
    assert "returnDate" in return_body["content"]["application/json"]["schema"]["properties"]
