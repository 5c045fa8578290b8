"""Borrow ledger: the only writer of borrow records.

Creating a borrow checks two invariants against the current state of the
book. The copy count is checked again by the insert statement itself, so
it holds even where row locks are unavailable:

* at least one copy must be available
  (``copies - active borrows > 0``);
* the borrower must not already hold an active borrow of the same book.

A borrow moves one way only, from ``borrowed`` to ``returned``. Returning a
book frees a copy implicitly because availability is always derived from
the count of active borrows.
"""

import os
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy import Date, DateTime, Integer, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lending import crud
from lending.models import Book, Borrow, BorrowStatus, utcnow
from lending.exceptions import (
    AlreadyBorrowedError,
    BookNotFoundError,
    BorrowNotFoundError,
    DatabaseError,
    InvalidStatusError,
    LibraryException,
    NoCopiesAvailableError,
)

load_dotenv()
logger = logging.getLogger(__name__)

BORROW_PERIOD_DAYS = int(os.getenv("BORROW_PERIOD_DAYS", "15"))


def count_active_borrows(db: Session, book_id: int) -> int:
    return (
        db.query(func.count(Borrow.id))
        .filter(Borrow.book_id == book_id, Borrow.status == BorrowStatus.borrowed.value)
        .scalar()
    )


def available_copies(db: Session, book_id: int) -> int:
    """Total copies minus active borrows. May be negative, never clamped here."""
    return crud.get_total_copies(db, book_id) - count_active_borrows(db, book_id)


def has_active_borrow(db: Session, borrower_id: int, book_id: int) -> bool:
    query = db.query(Borrow).filter(
        Borrow.user_id == borrower_id,
        Borrow.book_id == book_id,
        Borrow.status == BorrowStatus.borrowed.value,
    )
    return db.query(query.exists()).scalar()


def default_due_date(now: Optional[datetime] = None) -> date:
    now = now or datetime.now()
    return (now + timedelta(days=BORROW_PERIOD_DAYS)).date()


def insert_if_available(
    db: Session, borrower_id: int, book_id: int, due_at: date
) -> int:
    """Insert an active borrow only while a copy is free; return rows inserted.

    The copy count and the insert are a single statement, so the check runs
    under the write lock that SQLite takes for the statement.
    """
    borrows = Borrow.__table__
    now = utcnow()
    active = (
        select(func.count(borrows.c.id))
        .where(
            borrows.c.book_id == book_id,
            borrows.c.status == BorrowStatus.borrowed.value,
        )
        .scalar_subquery()
    )
    copies = select(Book.copies).where(Book.id == book_id).scalar_subquery()
    row = select(
        literal(borrower_id, Integer),
        literal(book_id, Integer),
        literal(BorrowStatus.borrowed.value, Integer),
        literal(due_at, Date),
        literal(now, DateTime),
        literal(now, DateTime),
    ).where(copies > active)
    stmt = insert(borrows).from_select(
        ["user_id", "book_id", "status", "due_at", "created_at", "updated_at"], row
    )
    return db.execute(stmt).rowcount


def create_borrow(
    db: Session,
    borrower_id: int,
    book_id: int,
    due_at: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Borrow:
    borrower = crud.get_user_by_id(db, borrower_id)
    try:
        # Row lock on backends that support it; a no-op on SQLite.
        book = (
            db.query(Book).filter(Book.id == book_id).with_for_update().first()
        )
        if book is None:
            raise BookNotFoundError(book_id)

        if book.copies - count_active_borrows(db, book_id) <= 0:
            raise NoCopiesAvailableError(book_id)
        if has_active_borrow(db, borrower.id, book_id):
            raise AlreadyBorrowedError(book_id)

        inserted = insert_if_available(
            db, borrower.id, book_id, due_at or default_due_date(now)
        )
        if inserted == 0:
            # Another borrow took the last copy after the check above.
            raise NoCopiesAvailableError(book_id)
        db.commit()
        borrow = (
            db.query(Borrow)
            .filter(
                Borrow.user_id == borrower.id,
                Borrow.book_id == book_id,
                Borrow.status == BorrowStatus.borrowed.value,
            )
            .one()
        )
    except LibraryException:
        db.rollback()
        raise
    except IntegrityError:
        # Lost a race against the partial unique index on active borrows.
        db.rollback()
        raise AlreadyBorrowedError(book_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("borrow", str(e))

    logger.info(
        f"User {borrower.id} borrowed book {book_id} (borrow {borrow.id}, due {borrow.due_at})"
    )
    return borrow


def get_borrow(db: Session, borrow_id: int) -> Borrow:
    try:
        borrow = db.query(Borrow).filter(Borrow.id == borrow_id).first()
        if borrow is None:
            raise BorrowNotFoundError(borrow_id)
        return borrow
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def update_borrow_status(
    db: Session,
    borrow_id: int,
    new_status: Optional[str] = None,
    due_at: Optional[date] = None,
) -> Borrow:
    borrow = get_borrow(db, borrow_id)

    if new_status is None and due_at is None:
        raise InvalidStatusError("status must be 'returned'")
    if new_status is not None and new_status != BorrowStatus.returned.name:
        raise InvalidStatusError(f"'{new_status}' is not a valid status transition")
    if borrow.status == BorrowStatus.returned:
        raise InvalidStatusError("borrow has already been returned")

    values = {"updated_at": utcnow()}
    if due_at is not None:
        values["due_at"] = due_at
    if new_status is not None:
        values["status"] = BorrowStatus.returned.value

    borrows = Borrow.__table__
    try:
        # Only an active borrow may change; a concurrent return wins once.
        result = db.execute(
            update(borrows)
            .where(
                borrows.c.id == borrow.id,
                borrows.c.status == BorrowStatus.borrowed.value,
            )
            .values(**values)
        )
        if result.rowcount == 0:
            db.rollback()
            raise InvalidStatusError("borrow has already been returned")
        db.commit()
        db.refresh(borrow)
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))

    logger.info(f"Borrow {borrow.id} updated: status={BorrowStatus(borrow.status).name}")
    return borrow


def list_borrows(
    db: Session,
    borrower_id: Optional[int] = None,
    status: Optional[BorrowStatus] = None,
) -> List[Borrow]:
    try:
        query = db.query(Borrow).options(
            selectinload(Borrow.book), selectinload(Borrow.user)
        )
        if borrower_id is not None:
            query = query.filter(Borrow.user_id == borrower_id)
        if status is not None:
            query = query.filter(Borrow.status == int(status))
        return query.order_by(Borrow.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
