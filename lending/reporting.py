import logging
from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lending import ledger
from lending.models import Book, Borrow, BorrowStatus, User
from lending.permissions import RoleName

logger = logging.getLogger(__name__)


def library_stats(db: Session, active_count: int) -> dict:
    total_books = db.query(func.coalesce(func.sum(Book.copies), 0)).scalar()
    return {
        "total_books": total_books,
        "total_borrowed": active_count,
        "available_books": max(total_books - active_count, 0),
    }


def members_with_due_books(borrows: list[Borrow], today: date) -> list[dict]:
    """Group active borrows due on or before ``today`` by borrower."""
    grouped: dict[int, dict] = {}
    for borrow in borrows:
        if borrow.due_at is None or borrow.due_at > today:
            continue
        entry = grouped.setdefault(
            borrow.user_id,
            {"user_id": borrow.user_id, "email": borrow.user.email, "due_books_count": 0},
        )
        entry["due_books_count"] += 1
    return list(grouped.values())


def build_report(db: Session, caller: User, today: Optional[date] = None) -> dict:
    today = today or date.today()
    is_librarian = caller.has_role(RoleName.librarian)

    all_active = None
    stats = None
    due_members = None
    if is_librarian:
        all_active = ledger.list_borrows(db, status=BorrowStatus.borrowed)
        user_active = [b for b in all_active if b.user_id == caller.id]
        stats = library_stats(db, len(all_active))
        due_members = members_with_due_books(all_active, today)
    else:
        user_active = ledger.list_borrows(
            db, borrower_id=caller.id, status=BorrowStatus.borrowed
        )

    due_today = [b for b in user_active if b.due_at is not None and b.due_at == today]
    overdue = [b for b in user_active if b.due_at is not None and b.due_at < today]

    logger.info(
        f"Built dashboard for user {caller.id} ({caller.primary_role}) as of {today}"
    )
    return {
        "role": caller.primary_role,
        "library_stats": stats,
        "user_stats": {
            "borrowed_count": len(user_active),
            "due_today_count": len(due_today),
            "overdue_count": len(overdue),
        },
        "borrows": user_active,
        "all_borrows": all_active,
        "due_today_borrows": due_today,
        "members_with_due_books": due_members,
    }
