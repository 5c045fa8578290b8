import logging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Optional
import bcrypt

from lending import models, schemas
from lending.permissions import RoleName
from lending.exceptions import (
    BookNotFoundError,
    DatabaseError,
    RecordValidationError,
    SearchTermMissingError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


# Users and roles


def get_user_by_id(db: Session, user_id: int) -> models.User:
    try:
        user = db.query(models.User).filter(models.User.id == user_id).first()
        if user is None:
            raise UserNotFoundError(user_id)
        return user
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def find_user_by_email(db: Session, email: str) -> Optional[models.User]:
    try:
        return (
            db.query(models.User)
            .filter(models.User.email == normalize_email(email))
            .first()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_or_create_role(db: Session, role_name: RoleName) -> models.Role:
    role = db.query(models.Role).filter(models.Role.name == role_name.value).first()
    if role is None:
        role = models.Role(name=role_name.value)
        db.add(role)
        db.flush()
    return role


def resolve_roles(requested: List[str]) -> List[RoleName]:
    """Keep the valid requested roles; fall back to member when none are."""
    roles = []
    for name in requested or []:
        role = RoleName.parse(name)
        if role is not None and role not in roles:
            roles.append(role)
    return roles or [RoleName.member]


def create_user_record(db: Session, user: schemas.UserCreate) -> models.User:
    errors = []
    email = normalize_email(user.email)
    if "@" not in email:
        errors.append("Email is invalid")
    if user.password != user.password_confirmation:
        errors.append("Password confirmation doesn't match Password")
    if email and find_user_by_email(db, email) is not None:
        errors.append("Email has already been taken")
    if errors:
        raise RecordValidationError(errors)

    try:
        db_user = models.User(email=email, hashed_password=hash_password(user.password))
        for role_name in resolve_roles(user.roles):
            db_user.roles.append(get_or_create_role(db, role_name))
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info(f"Registered user {db_user.email} with roles {db_user.role_names}")
        return db_user
    except IntegrityError:
        db.rollback()
        raise RecordValidationError("Email has already been taken")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))


# Books (inventory)


def _check_book_fields(values: dict) -> None:
    errors = [
        f"{field.capitalize()} can't be blank"
        for field in ("title", "author", "isbn")
        if field in values and not (values[field] or "").strip()
    ]
    if values.get("copies") is not None and values["copies"] < 0:
        errors.append("Copies must be greater than or equal to 0")
    if errors:
        raise RecordValidationError(errors)


def _isbn_taken(db: Session, isbn: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(models.Book).filter(models.Book.isbn == isbn)
    if exclude_id is not None:
        query = query.filter(models.Book.id != exclude_id)
    return db.query(query.exists()).scalar()


def create_book(db: Session, item: schemas.BookCreate) -> models.Book:
    values = item.model_dump()
    _check_book_fields(values)
    if _isbn_taken(db, values["isbn"]):
        raise RecordValidationError("Isbn has already been taken")
    try:
        db_item = models.Book(**values)
        db.add(db_item)
        db.commit()
        db.refresh(db_item)
        logger.info(f"Created book {db_item.id}: {db_item.title}")
        return db_item
    except IntegrityError:
        db.rollback()
        raise RecordValidationError("Isbn has already been taken")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))


def get_book(db: Session, book_id: int) -> models.Book:
    try:
        book = db.query(models.Book).filter(models.Book.id == book_id).first()
        if book is None:
            raise BookNotFoundError(book_id)
        return book
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_total_copies(db: Session, book_id: int) -> int:
    return get_book(db, book_id).copies


def list_books(db: Session) -> List[models.Book]:
    try:
        return db.query(models.Book).order_by(models.Book.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def search_books(db: Session, term: Optional[str]) -> List[models.Book]:
    term = (term or "").strip().lower()
    if not term:
        raise SearchTermMissingError()
    pattern = f"%{term}%"
    try:
        return (
            db.query(models.Book)
            .filter(
                or_(
                    func.lower(models.Book.title).like(pattern),
                    func.lower(models.Book.author).like(pattern),
                    func.lower(models.Book.genre).like(pattern),
                    func.lower(models.Book.isbn).like(pattern),
                )
            )
            .order_by(models.Book.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("search", str(e))


def update_book(db: Session, book_id: int, book_update: schemas.BookUpdate) -> models.Book:
    book = get_book(db, book_id)
    update_data = book_update.model_dump(exclude_unset=True)
    _check_book_fields(update_data)
    if "copies" in update_data and update_data["copies"] is None:
        raise RecordValidationError("Copies can't be blank")
    if "isbn" in update_data and _isbn_taken(db, update_data["isbn"], exclude_id=book.id):
        raise RecordValidationError("Isbn has already been taken")
    try:
        for field, value in update_data.items():
            setattr(book, field, value)
        db.commit()
        db.refresh(book)
        logger.info(f"Updated book {book.id}: {sorted(update_data)}")
        return book
    except IntegrityError:
        db.rollback()
        raise RecordValidationError("Isbn has already been taken")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))


def delete_book(db: Session, book_id: int) -> bool:
    book = get_book(db, book_id)
    try:
        db.delete(book)
        db.commit()
        logger.info(f"Deleted book {book_id} and its borrows")
        return True
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("delete", str(e))
