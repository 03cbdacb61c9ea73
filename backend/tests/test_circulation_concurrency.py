"""
Races on the copy count. Each worker uses its own session, the way
concurrent requests do; all seeding is committed before the workers start.
"""
import threading

from library_app.core.database import SessionLocal
from library_app.core.exceptions import (
    AlreadyReturnedError,
    BorrowLimitExceededError,
    NoCopiesAvailableError,
)
from library_app.models.catalog import Book
from library_app.models.circulation import Circulation, CHECKED_OUT
from library_app.services.circulation_service import circulation_service


def run_concurrently(worker, args_list):
    """Start every worker at once; collect what each returned or raised"""
    barrier = threading.Barrier(len(args_list))
    outcomes = [None] * len(args_list)

    def _run(index, args):
        db = SessionLocal()
        try:
            barrier.wait()
            outcomes[index] = worker(db, *args)
        except Exception as e:
            outcomes[index] = e
        finally:
            db.close()

    threads = [
        threading.Thread(target=_run, args=(index, args))
        for index, args in enumerate(args_list)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def loans_out(db, book_id):
    return db.query(Circulation).filter(
        Circulation.book_id == book_id,
        Circulation.status == CHECKED_OUT
    ).count()


def test_last_copy_goes_to_exactly_one_patron(db, make_book, make_patron):
    book = make_book(total_copies=1)
    patrons = [make_patron() for _ in range(8)]

    outcomes = run_concurrently(
        lambda session, patron_id: circulation_service.borrow(session, book.id, patron_id),
        [(patron.id,) for patron in patrons],
    )

    winners = [o for o in outcomes if isinstance(o, Circulation)]
    losers = [o for o in outcomes if isinstance(o, NoCopiesAvailableError)]
    assert len(winners) == 1
    assert len(losers) == 7

    db.expire_all()
    assert db.get(Book, book.id).available_copies == 0
    assert loans_out(db, book.id) == 1


def test_copies_are_never_oversubscribed(db, make_book, make_patron):
    book = make_book(total_copies=3)
    patrons = [make_patron() for _ in range(10)]

    outcomes = run_concurrently(
        lambda session, patron_id: circulation_service.borrow(session, book.id, patron_id),
        [(patron.id,) for patron in patrons],
    )

    assert sum(isinstance(o, Circulation) for o in outcomes) == 3
    assert sum(isinstance(o, NoCopiesAvailableError) for o in outcomes) == 7

    db.expire_all()
    stored = db.get(Book, book.id)
    assert stored.available_copies == 0
    assert loans_out(db, book.id) == 3


def test_concurrent_returns_count_the_copy_once(db, make_book, make_patron):
    book = make_book(total_copies=2)
    patron = make_patron()
    loan = circulation_service.borrow(db, book.id, patron.id)

    outcomes = run_concurrently(
        lambda session, loan_id: circulation_service.return_loan(session, loan_id),
        [(loan.id,), (loan.id,)],
    )

    assert sum(isinstance(o, Circulation) for o in outcomes) == 1
    assert sum(isinstance(o, AlreadyReturnedError) for o in outcomes) == 1

    db.expire_all()
    assert db.get(Book, book.id).available_copies == 2
    assert loans_out(db, book.id) == 0


def test_borrow_limit_holds_under_concurrent_borrows(db, make_book, make_patron):
    patron_id = make_patron(max_books=1).id
    same_title = make_book(title="Shared", total_copies=4)

    outcomes = run_concurrently(
        lambda session, book_id: circulation_service.borrow(session, book_id, patron_id),
        [(same_title.id,)] * 4,
    )

    assert sum(isinstance(o, Circulation) for o in outcomes) == 1
    assert sum(isinstance(o, BorrowLimitExceededError) for o in outcomes) == 3

    db.expire_all()
    assert db.get(Book, same_title.id).available_copies == 3


def test_borrow_limit_holds_across_different_books(db, make_book, make_patron):
    patron_id = make_patron(max_books=2).id
    books = [make_book(title=f"Title {n}", total_copies=1) for n in range(5)]

    outcomes = run_concurrently(
        lambda session, book_id: circulation_service.borrow(session, book_id, patron_id),
        [(book.id,) for book in books],
    )

    assert sum(isinstance(o, Circulation) for o in outcomes) == 2
    assert sum(isinstance(o, BorrowLimitExceededError) for o in outcomes) == 3

    db.expire_all()
    out = db.query(Circulation).filter(
        Circulation.patron_id == patron_id,
        Circulation.status == CHECKED_OUT
    ).count()
    assert out == 2
    assert sum(db.get(Book, book.id).available_copies for book in books) == 3
