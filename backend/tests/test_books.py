import pytest

from library_app.core.exceptions import NotFoundError, ValidationError
from library_app.models.review import Review
from library_app.models.user import UserRole
from library_app.services.review_service import review_service


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

def test_books_catalog(client, make_user, auth_headers):
    make_user("alice")
    make_user("desk", role=UserRole.STAFF)
    payload = {"title": "Dune", "authorName": "Frank Herbert", "publicationYear": 1965, "totalCopies": 3}

    assert client.post("/books", json=payload, headers=auth_headers("alice")).status_code == 403

    created = client.post("/books", json=payload, headers=auth_headers("desk"), follow_redirects=False)
    assert created.status_code == 201
    book = created.json()
    assert book["available_copies"] == 3
    assert book["author"]["name"] == "Frank Herbert"

    listed = client.get("/books", headers=auth_headers("alice"), follow_redirects=False)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [book["id"]]
    assert client.get(f"/books/{book['id']}", headers=auth_headers("alice")).json()["title"] == "Dune"
    assert client.get("/books/missing", headers=auth_headers("alice")).status_code == 404


def test_create_book_validates_copies(client, make_user, auth_headers):
    make_user("desk", role=UserRole.STAFF)

    response = client.post("/books", json={"title": "Dune", "totalCopies": 0}, headers=auth_headers("desk"))

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


# ----------------------------------------------------------------------
# Reviews
# ----------------------------------------------------------------------

def test_second_review_replaces_the_first(db, make_user, make_book):
    alice = make_user("alice")
    book = make_book()

    first, created = review_service.submit_review(db, alice, book.id, 3, "Slow start")
    assert created
    second, created = review_service.submit_review(db, alice, book.id, 5, "Worth it")

    assert not created
    assert second.id == first.id
    assert (second.rating, second.comment) == (5, "Worth it")
    assert db.query(Review).count() == 1


def test_blank_comment_is_stored_as_none(db, make_user, make_book):
    alice = make_user("alice")
    book = make_book()

    review, _ = review_service.submit_review(db, alice, book.id, 4, "   ")
    assert review.comment is None


@pytest.mark.parametrize("rating", [0, 6, -1, True, 4.5, "5", None])
def test_rating_must_be_whole_number_in_range(db, make_user, make_book, rating):
    alice = make_user("alice")
    book = make_book()

    with pytest.raises(ValidationError):
        review_service.submit_review(db, alice, book.id, rating)
    assert db.query(Review).count() == 0


def test_review_of_unknown_book(db, make_user):
    alice = make_user("alice")

    with pytest.raises(NotFoundError):
        review_service.submit_review(db, alice, "missing", 4)
    with pytest.raises(NotFoundError):
        review_service.list_reviews(db, "missing")


def test_rating_summary(db, make_user, make_book):
    book = make_book()
    other = make_book(title="Other")
    assert review_service.rating_summary(db, book.id) == {"average_rating": None, "review_count": 0}

    for username, rating in (("alice", 5), ("bob", 4), ("carol", 4)):
        review_service.submit_review(db, make_user(username), book.id, rating)
    review_service.submit_review(db, make_user("dave"), other.id, 1)

    assert review_service.rating_summary(db, book.id) == {"average_rating": 4.33, "review_count": 3}


def test_reviews_through_api(client, make_user, make_book, auth_headers):
    make_user("alice", full_name="Alice A")
    make_user("bob", full_name="Bob B")
    book = make_book()
    alice_headers = auth_headers("alice")

    added = client.post(f"/books/{book.id}/reviews", json={"rating": 4, "comment": "Good"}, headers=alice_headers)
    assert added.status_code == 201
    assert added.json()["reviewer_name"] == "Alice A"

    edited = client.post(f"/books/{book.id}/reviews", json={"rating": 2}, headers=alice_headers)
    assert edited.status_code == 200
    assert edited.json()["id"] == added.json()["id"]
    assert edited.json()["comment"] is None

    client.post(f"/books/{book.id}/reviews", json={"rating": 5}, headers=auth_headers("bob"))

    listed = client.get(f"/books/{book.id}/reviews", headers=alice_headers)
    assert listed.status_code == 200
    body = listed.json()
    assert body["review_count"] == 2
    assert body["average_rating"] == 3.5
    assert {(r["reviewer_name"], r["rating"]) for r in body["reviews"]} == {("Alice A", 2), ("Bob B", 5)}


@pytest.mark.parametrize("payload", [{"rating": 0}, {"rating": 6}, {}, {"rating": "great"}])
def test_review_api_rejects_bad_rating(client, make_user, make_book, auth_headers, payload):
    make_user("alice")
    book = make_book()

    response = client.post(f"/books/{book.id}/reviews", json=payload, headers=auth_headers("alice"))

    assert response.status_code == 400


def test_reviews_require_session(client, make_book):
    book = make_book()
    assert client.get(f"/books/{book.id}/reviews").status_code == 401
    assert client.post(f"/books/{book.id}/reviews", json={"rating": 5}).status_code == 401


def test_deleting_user_removes_their_reviews(db, make_user, make_book):
    alice = make_user("alice")
    book = make_book()
    review_service.submit_review(db, alice, book.id, 5)

    db.delete(alice)
    db.commit()

    assert db.query(Review).count() == 0
