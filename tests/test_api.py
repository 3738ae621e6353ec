"""
Tests for the REST API.

Requests go through FastAPI's TestClient against a file-backed SQLite
database. Test data is committed through ``db_manager.session_scope()`` so
every request sees it from its own session.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from library_ledger.access import StaticTokenAuthenticator
from library_ledger.api import create_app
from library_ledger.config import set_config
from library_ledger.database import BookRepository, LoanRepository
from library_ledger.models.loan import utc_now
from tests.conftest import ACCESS_TOKENS, ALICE_TOKEN, BOB_TOKEN, LIBRARIAN_TOKEN, make_book


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_manager):
    app = create_app(
        db_manager=db_manager,
        authenticator=StaticTokenAuthenticator.from_config(ACCESS_TOKENS),
        loan_period_days=14,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def catalog(db_manager):
    """Seed three books and return their IDs keyed by a short name."""
    with db_manager.session_scope() as session:
        repo = BookRepository(session)
        return {
            "gatsby": make_book(repo, "9780743273565", "The Great Gatsby", 2, "F. Scott Fitzgerald").id,
            "dune": make_book(repo, "9780441013593", "Dune", 1, "Frank Herbert", "Science Fiction").id,
            "catcher": make_book(repo, "0316769487", "The Catcher in the Rye", 0, "J. D. Salinger").id,
        }


@pytest.fixture
def overdue_loan(db_manager, catalog):
    """Bob borrowed Dune almost twenty days ago; it is six started days overdue."""
    with db_manager.session_scope() as session:
        return LoanRepository(session, loan_period_days=14).borrow(
            "bob", catalog["dune"], utc_now() - timedelta(days=19, hours=23)
        )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] is True
        assert body["version"]


class TestBooks:
    def test_list_books_is_public(self, client, catalog):
        response = client.get("/books")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["pageSize"] == 20
        assert body["hasNext"] is False
        assert [book["title"] for book in body["items"]] == [
            "Dune",
            "The Catcher in the Rye",
            "The Great Gatsby",
        ]

    def test_book_payload_uses_camel_case(self, client, catalog):
        body = client.get(f"/books/{catalog['gatsby']}").json()

        assert body["id"] == catalog["gatsby"]
        assert body["quantity"] == 2
        assert body["available"] == 2
        assert "publishedYear" in body
        assert "createdAt" in body
        assert "published_year" not in body

    def test_filters(self, client, catalog):
        assert client.get("/books", params={"search": "herbert"}).json()["total"] == 1
        assert client.get("/books", params={"genre": "fiction"}).json()["total"] == 2
        available = client.get("/books", params={"availableOnly": "true"}).json()
        assert {book["id"] for book in available["items"]} == {catalog["gatsby"], catalog["dune"]}

    def test_pagination(self, client, catalog):
        body = client.get("/books", params={"page": 2, "pageSize": 2}).json()
        assert [book["title"] for book in body["items"]] == ["The Great Gatsby"]
        assert body["hasPrevious"] is True

    def test_page_size_out_of_range(self, client):
        response = client.get("/books", params={"pageSize": 1000})
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_argument"

    def test_configured_page_size_limit(self, client, catalog, test_config):
        set_config(test_config.model_copy(update={"max_page_size": 200}))

        response = client.get("/books", params={"pageSize": 150})

        assert response.status_code == 200
        assert response.json()["pageSize"] == 150
        assert client.get("/books", params={"pageSize": 201}).status_code == 422

    def test_genres(self, client, catalog):
        assert client.get("/books/genres").json() == ["Fiction", "Science Fiction"]

    def test_unknown_book(self, client):
        response = client.get("/books/book_ffffffffffff")

        assert response.status_code == 404
        assert response.json() == {
            "error": "not_found",
            "message": "Book book_ffffffffffff not found",
        }

    def test_librarian_creates_book(self, client):
        response = client.post(
            "/books",
            json={
                "isbn": "978-0-13-468547-9",
                "title": "Effective Java",
                "author": "Joshua Bloch",
                "genre": "programming",
                "publishedYear": 2018,
                "quantity": 4,
            },
            headers=auth(LIBRARIAN_TOKEN),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["isbn"] == "9780134685479"
        assert body["genre"] == "Programming"
        assert body["quantity"] == 4
        assert body["available"] == 4

    def test_create_requires_authentication(self, client):
        response = client.post("/books", json={"isbn": "9780134685479", "title": "T", "author": "A"})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_borrower_cannot_create(self, client):
        response = client.post(
            "/books",
            json={"isbn": "9780134685479", "title": "T", "author": "A"},
            headers=auth(ALICE_TOKEN),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_duplicate_isbn(self, client, catalog):
        response = client.post(
            "/books",
            json={"isbn": "978-0743273565", "title": "Gatsby Again", "author": "Someone"},
            headers=auth(LIBRARIAN_TOKEN),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate"

    def test_invalid_body(self, client):
        response = client.post(
            "/books",
            json={"isbn": "not-an-isbn", "title": "T", "author": "A"},
            headers=auth(LIBRARIAN_TOKEN),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "invalid_argument"
        assert "isbn" in body["message"]

    def test_update_quantity_recomputes_available(self, client, catalog):
        client.post("/borrow", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN))

        response = client.put(
            f"/books/{catalog['gatsby']}",
            json={"quantity": 5, "title": "The Great Gatsby (Annotated)"},
            headers=auth(LIBRARIAN_TOKEN),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "The Great Gatsby (Annotated)"
        assert (body["quantity"], body["available"]) == (5, 4)

    def test_update_cannot_set_available(self, client, catalog):
        response = client.put(
            f"/books/{catalog['gatsby']}",
            json={"available": 10},
            headers=auth(LIBRARIAN_TOKEN),
        )
        assert response.status_code == 422

    def test_delete(self, client, catalog):
        response = client.delete(f"/books/{catalog['catcher']}", headers=auth(LIBRARIAN_TOKEN))

        assert response.status_code == 204
        assert client.get(f"/books/{catalog['catcher']}").status_code == 404

    def test_delete_with_open_loans(self, client, catalog, overdue_loan):
        response = client.delete(f"/books/{catalog['dune']}", headers=auth(LIBRARIAN_TOKEN))

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_argument"


class TestBorrowing:
    def test_borrow_and_return(self, client, catalog):
        borrowed = client.post(
            "/borrow", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN)
        )

        assert borrowed.status_code == 201
        loan = borrowed.json()
        assert loan["borrowerId"] == "alice"
        assert loan["bookId"] == catalog["gatsby"]
        assert loan["status"] == "borrowed"
        assert loan["isOverdue"] is False
        assert loan["returnDate"] is None
        assert client.get(f"/books/{catalog['gatsby']}").json()["available"] == 1

        returned = client.post(
            "/borrow/return", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN)
        )

        assert returned.status_code == 200
        assert returned.json()["id"] == loan["id"]
        assert returned.json()["status"] == "returned"
        assert client.get(f"/books/{catalog['gatsby']}").json()["available"] == 2

    def test_borrow_requires_authentication(self, client, catalog):
        response = client.post("/borrow", json={"bookId": catalog["gatsby"]})
        assert response.status_code == 401

        response = client.post(
            "/borrow", json={"bookId": catalog["gatsby"]}, headers=auth("bogus")
        )
        assert response.status_code == 401

    def test_conflicts(self, client, catalog):
        client.post("/borrow", json={"bookId": catalog["dune"]}, headers=auth(ALICE_TOKEN))

        duplicate = client.post("/borrow", json={"bookId": catalog["dune"]}, headers=auth(ALICE_TOKEN))
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "duplicate_loan"

        unavailable = client.post("/borrow", json={"bookId": catalog["dune"]}, headers=auth(BOB_TOKEN))
        assert unavailable.status_code == 409
        assert unavailable.json()["error"] == "unavailable"

    def test_borrow_unknown_book(self, client):
        response = client.post("/borrow", json={"bookId": "book_ffffffffffff"}, headers=auth(ALICE_TOKEN))
        assert response.status_code == 404

    def test_double_return_by_loan_id(self, client, catalog):
        loan = client.post(
            "/borrow", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN)
        ).json()

        first = client.post("/borrow/return", json={"loanId": loan["id"]}, headers=auth(ALICE_TOKEN))
        second = client.post("/borrow/return", json={"loanId": loan["id"]}, headers=auth(ALICE_TOKEN))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "already_returned"
        assert client.get(f"/books/{catalog['gatsby']}").json()["available"] == 2

    def test_return_without_target(self, client):
        response = client.post("/borrow/return", json={}, headers=auth(ALICE_TOKEN))
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_argument"

    def test_borrower_cannot_return_for_someone_else(self, client, catalog, overdue_loan):
        response = client.post(
            "/borrow/return",
            json={"bookId": catalog["dune"], "borrowerId": "bob"},
            headers=auth(ALICE_TOKEN),
        )
        assert response.status_code == 403

    def test_librarian_returns_for_borrower(self, client, catalog, overdue_loan):
        response = client.post(
            "/borrow/return",
            json={"bookId": catalog["dune"], "borrowerId": "bob"},
            headers=auth(LIBRARIAN_TOKEN),
        )
        assert response.status_code == 200
        assert response.json()["id"] == overdue_loan.id

    def test_my_books(self, client, catalog, overdue_loan):
        client.post("/borrow", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN))

        alice = client.get("/borrow/my-books", headers=auth(ALICE_TOKEN)).json()
        bob = client.get("/borrow/my-books", headers=auth(BOB_TOKEN)).json()

        assert [loan["bookId"] for loan in alice["items"]] == [catalog["gatsby"]]
        assert [loan["id"] for loan in bob["items"]] == [overdue_loan.id]
        assert bob["items"][0]["isOverdue"] is True
        assert bob["items"][0]["daysOverdue"] == 6


class TestLibrarianViews:
    def test_overdue(self, client, overdue_loan):
        response = client.get("/borrow/overdue", headers=auth(LIBRARIAN_TOKEN))

        assert response.status_code == 200
        loans = response.json()
        assert [loan["id"] for loan in loans] == [overdue_loan.id]
        assert loans[0]["daysOverdue"] == 6

    @pytest.mark.parametrize("path", ["/borrow/overdue", "/borrow/all", "/borrow/stats"])
    def test_borrowers_are_forbidden(self, client, path):
        assert client.get(path, headers=auth(ALICE_TOKEN)).status_code == 403

    def test_all_loans_with_filters(self, client, catalog, overdue_loan):
        client.post("/borrow", json={"bookId": catalog["gatsby"]}, headers=auth(ALICE_TOKEN))

        everything = client.get("/borrow/all", headers=auth(LIBRARIAN_TOKEN)).json()
        overdue = client.get(
            "/borrow/all", params={"status": "overdue"}, headers=auth(LIBRARIAN_TOKEN)
        ).json()
        alice = client.get(
            "/borrow/all", params={"borrowerId": "alice"}, headers=auth(LIBRARIAN_TOKEN)
        ).json()

        assert everything["total"] == 2
        assert [loan["id"] for loan in overdue["items"]] == [overdue_loan.id]
        assert [loan["borrowerId"] for loan in alice["items"]] == ["alice"]

    def test_unknown_status_filter(self, client):
        response = client.get(
            "/borrow/all", params={"status": "lost"}, headers=auth(LIBRARIAN_TOKEN)
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_argument"

    def test_stats(self, client, catalog, overdue_loan):
        body = client.get("/borrow/stats", headers=auth(LIBRARIAN_TOKEN)).json()

        assert body["totalLoans"] == 1
        assert body["openLoans"] == 1
        assert body["overdueLoans"] == 1
        assert body["totalCopies"] == 3
        assert body["copiesOnLoan"] == 1
        assert body["booksUnavailable"] == 2
