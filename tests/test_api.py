from datetime import date, timedelta

from lending import ledger
from lending.models import Borrow, BorrowStatus


def test_welcome(client):
    response = client.get("/api/v1/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to the Books API", "version": "v1"}


def test_health(client):
    assert client.get("/up").status_code == 200


# Users and sessions


def test_create_user(client, db_session):
    response = client.post(
        "/api/v1/users",
        json={
            "email": "NewUser@Example.com",
            "password": "password123",
            "password_confirmation": "password123",
        },
    )
    assert response.status_code == 201
    assert response.json() == {"email": "newuser@example.com", "roles": ["member"]}


def test_create_user_with_librarian_role(client):
    response = client.post(
        "/api/v1/users",
        json={
            "email": "boss@example.com",
            "password": "password123",
            "password_confirmation": "password123",
            "roles": ["librarian"],
        },
    )
    assert response.status_code == 201
    assert response.json()["roles"] == ["librarian"]


def test_create_user_with_invalid_role_defaults_to_member(client):
    response = client.post(
        "/api/v1/users",
        json={
            "email": "someone@example.com",
            "password": "password123",
            "password_confirmation": "password123",
            "roles": ["admin"],
        },
    )
    assert response.status_code == 201
    assert response.json()["roles"] == ["member"]


def test_create_user_password_mismatch(client):
    response = client.post(
        "/api/v1/users",
        json={
            "email": "someone@example.com",
            "password": "password123",
            "password_confirmation": "different",
        },
    )
    assert response.status_code == 422
    assert "Password confirmation doesn't match Password" in response.json()["errors"]


def test_create_user_duplicate_email(client, member):
    response = client.post(
        "/api/v1/users",
        json={
            "email": "MEMBER@example.com",
            "password": "password123",
            "password_confirmation": "password123",
        },
    )
    assert response.status_code == 422
    assert "Email has already been taken" in response.json()["errors"]


def test_login_and_logout(client, db_session, member):
    response = client.post(
        "/api/v1/login", json={"email": "member@example.com", "password": "password123"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Login successful"
    assert data["user"] == {"id": member.id, "email": member.email, "roles": ["member"]}
    token = data["token"]
    assert len(token) == 64

    headers = {"Authorization": f"Bearer {token}"}
    assert client.get("/api/v1/borrows", headers=headers).status_code == 200

    response = client.delete("/api/v1/logout", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}

    assert client.get("/api/v1/borrows", headers=headers).status_code == 401


def test_login_with_wrong_password(client, member):
    response = client.post(
        "/api/v1/login", json={"email": "member@example.com", "password": "nope"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_unknown_token_is_rejected(client):
    response = client.get("/api/v1/books", headers={"Authorization": "Bearer bogus"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"


# Books


def test_list_books(client, member, test_book, auth_headers):
    response = client.get("/api/v1/books", headers=auth_headers(member))
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["title"] == test_book.title
    assert data[0]["available_copies"] == 5


def test_get_single_book(client, member, test_book, auth_headers):
    response = client.get(f"/api/v1/books/{test_book.id}", headers=auth_headers(member))
    assert response.status_code == 200
    assert response.json()["isbn"] == "1234567890"


def test_get_missing_book(client, member, auth_headers):
    response = client.get("/api/v1/books/999", headers=auth_headers(member))
    assert response.status_code == 404
    assert response.json()["detail"] == "Book not found"


def test_librarian_creates_book(client, librarian, auth_headers):
    response = client.post(
        "/api/v1/books",
        json={
            "title": "New Book",
            "author": "Someone",
            "genre": "Poetry",
            "isbn": "999",
            "copies": 2,
        },
        headers=auth_headers(librarian),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["available_copies"] == 2
    assert "id" in data


def test_member_cannot_create_book(client, member, auth_headers):
    response = client.post(
        "/api/v1/books",
        json={"title": "New Book", "author": "Someone", "isbn": "999", "copies": 2},
        headers=auth_headers(member),
    )
    assert response.status_code == 403


def test_create_book_with_duplicate_isbn(client, librarian, test_book, auth_headers):
    response = client.post(
        "/api/v1/books",
        json={"title": "Copy", "author": "Someone", "isbn": test_book.isbn, "copies": 1},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 422
    assert response.json()["errors"] == ["Isbn has already been taken"]


def test_create_book_with_blank_title(client, librarian, auth_headers):
    response = client.post(
        "/api/v1/books",
        json={"title": " ", "author": "Someone", "isbn": "42", "copies": 1},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 422


def test_create_book_with_negative_copies(client, librarian, auth_headers):
    response = client.post(
        "/api/v1/books",
        json={"title": "T", "author": "A", "isbn": "42", "copies": -1},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 422


def test_update_book(client, librarian, test_book, auth_headers):
    response = client.put(
        f"/api/v1/books/{test_book.id}",
        json={"copies": 7},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 200
    assert response.json()["copies"] == 7
    assert response.json()["title"] == "Test Book"


def test_update_missing_book(client, librarian, auth_headers):
    response = client.patch(
        "/api/v1/books/999", json={"copies": 7}, headers=auth_headers(librarian)
    )
    assert response.status_code == 404


def test_delete_book_removes_borrows(
    client, db_session, librarian, member, test_book, auth_headers
):
    ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.delete(
        f"/api/v1/books/{test_book.id}", headers=auth_headers(librarian)
    )
    assert response.status_code == 200
    assert response.json() == {"message": "Book deleted successfully"}
    assert db_session.query(Borrow).count() == 0


def test_search_books(client, member, test_book, auth_headers):
    response = client.post(
        "/api/v1/books/search", params={"q": "FICTION"}, headers=auth_headers(member)
    )
    assert response.status_code == 200
    assert [b["id"] for b in response.json()] == [test_book.id]

    response = client.post(
        "/api/v1/books/search",
        params={"search_string": "nothing like this"},
        headers=auth_headers(member),
    )
    assert response.status_code == 200
    assert response.json() == []


def test_search_requires_a_term(client, member, auth_headers):
    response = client.post("/api/v1/books/search", headers=auth_headers(member))
    assert response.status_code == 400
    assert response.json()["detail"] == "Search parameter is required"


# Borrows


def test_member_borrows_book(client, member, test_book, auth_headers):
    response = client.post(
        "/api/v1/borrows", json={"book_id": test_book.id}, headers=auth_headers(member)
    )
    assert response.status_code == 201
    data = response.json()
    assert data["book_id"] == test_book.id
    assert data["user_id"] == member.id
    assert data["status"] == "borrowed"
    assert data["due_at"] == (date.today() + timedelta(days=15)).isoformat()
    assert "user" not in data


def test_member_cannot_borrow_for_someone_else(
    client, member, another_member, test_book, auth_headers
):
    response = client.post(
        "/api/v1/borrows",
        json={"book_id": test_book.id, "user_id": another_member.id},
        headers=auth_headers(member),
    )
    assert response.status_code == 201
    assert response.json()["user_id"] == member.id


def test_librarian_lends_on_behalf_of_member(
    client, librarian, member, test_book, auth_headers
):
    response = client.post(
        "/api/v1/borrows",
        json={"book_id": test_book.id, "user_id": member.id},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 201
    assert response.json()["user_id"] == member.id
    assert response.json()["user"] == {"id": member.id, "email": member.email}


def test_borrow_without_copies(
    client, member, another_member, book_with_one_copy, auth_headers
):
    first = client.post(
        "/api/v1/borrows",
        json={"book_id": book_with_one_copy.id},
        headers=auth_headers(another_member),
    )
    assert first.status_code == 201

    response = client.post(
        "/api/v1/borrows",
        json={"book_id": book_with_one_copy.id},
        headers=auth_headers(member),
    )
    assert response.status_code == 422
    assert response.json()["detail"] == "Book has no available copies"


def test_borrow_same_book_twice(client, member, test_book, auth_headers):
    client.post(
        "/api/v1/borrows", json={"book_id": test_book.id}, headers=auth_headers(member)
    )
    response = client.post(
        "/api/v1/borrows", json={"book_id": test_book.id}, headers=auth_headers(member)
    )
    assert response.status_code == 422
    assert "already borrowed" in response.json()["detail"]


def test_borrow_missing_book(client, member, auth_headers):
    response = client.post(
        "/api/v1/borrows", json={"book_id": 999}, headers=auth_headers(member)
    )
    assert response.status_code == 404


def test_borrow_requires_authentication(client, test_book):
    response = client.post("/api/v1/borrows", json={"book_id": test_book.id})
    assert response.status_code == 401


def test_list_borrows_is_scoped_by_role(
    client, db_session, librarian, member, another_member, test_book, auth_headers
):
    own = ledger.create_borrow(db_session, member.id, test_book.id)
    other = ledger.create_borrow(db_session, another_member.id, test_book.id)

    response = client.get("/api/v1/borrows", headers=auth_headers(librarian))
    assert response.status_code == 200
    assert [b["id"] for b in response.json()] == [own.id, other.id]
    assert response.json()[0]["user"] == {"id": member.id, "email": member.email}

    response = client.get("/api/v1/borrows", headers=auth_headers(member))
    assert response.status_code == 200
    assert [b["id"] for b in response.json()] == [own.id]
    assert response.json()[0]["book"]["title"] == "Test Book"
    assert "user" not in response.json()[0]


def test_list_borrows_requires_authentication(client):
    response = client.get("/api/v1/borrows")
    assert response.status_code == 401


def test_show_borrow(client, db_session, member, another_member, test_book, auth_headers):
    borrow = ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.get(f"/api/v1/borrows/{borrow.id}", headers=auth_headers(member))
    assert response.status_code == 200
    assert response.json()["id"] == borrow.id
    assert "user" not in response.json()

    response = client.get(
        f"/api/v1/borrows/{borrow.id}", headers=auth_headers(another_member)
    )
    assert response.status_code == 403


def test_show_missing_borrow(client, librarian, auth_headers):
    response = client.get("/api/v1/borrows/999", headers=auth_headers(librarian))
    assert response.status_code == 404
    assert response.json()["detail"] == "Borrow not found"


def test_librarian_returns_borrow(client, db_session, librarian, member, test_book, auth_headers):
    borrow = ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.patch(
        f"/api/v1/borrows/{borrow.id}",
        json={"status": "returned"},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "returned"

    db_session.refresh(borrow)
    assert borrow.status == BorrowStatus.returned

    response = client.patch(
        f"/api/v1/borrows/{borrow.id}",
        json={"status": "returned"},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 422


def test_invalid_status(client, db_session, librarian, member, test_book, auth_headers):
    borrow = ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.patch(
        f"/api/v1/borrows/{borrow.id}",
        json={"status": "invalid_status"},
        headers=auth_headers(librarian),
    )
    assert response.status_code == 422
    assert "status" in response.json()["detail"].lower()


def test_update_missing_borrow(client, librarian, auth_headers):
    response = client.patch(
        "/api/v1/borrows/999", json={"status": "returned"}, headers=auth_headers(librarian)
    )
    assert response.status_code == 404


def test_member_cannot_return(client, db_session, member, test_book, auth_headers):
    borrow = ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.patch(
        f"/api/v1/borrows/{borrow.id}",
        json={"status": "returned"},
        headers=auth_headers(member),
    )
    assert response.status_code == 403


def test_update_requires_authentication(client, db_session, member, test_book):
    borrow = ledger.create_borrow(db_session, member.id, test_book.id)

    response = client.patch(f"/api/v1/borrows/{borrow.id}", json={"status": "returned"})
    assert response.status_code == 401


# Dashboard


def test_dashboard_for_librarian(
    client, db_session, librarian, member, another_member, test_book, auth_headers
):
    today = date.today()
    ledger.create_borrow(db_session, member.id, test_book.id, due_at=today - timedelta(days=1))
    ledger.create_borrow(db_session, another_member.id, test_book.id)

    response = client.get("/api/v1/dashboard", headers=auth_headers(librarian))
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "librarian"
    assert data["library_stats"] == {
        "total_books": 5,
        "total_borrowed": 2,
        "available_books": 3,
    }
    assert len(data["all_borrows"]) == data["library_stats"]["total_borrowed"]
    assert data["members_with_due_books"] == [
        {"user_id": member.id, "email": member.email, "due_books_count": 1}
    ]
    assert data["borrows"] == []
    assert {b["user"]["email"] for b in data["all_borrows"]} == {
        member.email,
        another_member.email,
    }


def test_dashboard_for_member(client, db_session, member, test_book, book_with_one_copy, auth_headers):
    today = date.today()
    ledger.create_borrow(db_session, member.id, test_book.id, due_at=today)
    ledger.create_borrow(
        db_session, member.id, book_with_one_copy.id, due_at=today - timedelta(days=3)
    )

    response = client.get("/api/v1/dashboard", headers=auth_headers(member))
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "member"
    assert data["library_stats"] is None
    assert data["all_borrows"] is None
    assert data["members_with_due_books"] is None
    assert data["user_stats"] == {
        "borrowed_count": 2,
        "due_today_count": 1,
        "overdue_count": 1,
    }
    assert [b["book_id"] for b in data["due_today_borrows"]] == [test_book.id]
    assert all("user" not in b for b in data["borrows"] + data["due_today_borrows"])


def test_dashboard_requires_authentication(client):
    assert client.get("/api/v1/dashboard").status_code == 401

