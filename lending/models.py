import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from lending.permissions import RoleName

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class BorrowStatus(enum.IntEnum):
    borrowed = 0
    returned = 1


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    auth_token = Column(String, unique=True, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    roles = relationship("Role", secondary="user_roles", back_populates="users")
    borrows = relationship("Borrow", back_populates="user")

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]

    def has_role(self, role_name: RoleName) -> bool:
        return role_name.value in self.role_names

    @property
    def primary_role(self) -> str | None:
        # Librarian wins when a user holds both roles.
        if self.has_role(RoleName.librarian):
            return RoleName.librarian.value
        if self.has_role(RoleName.member):
            return RoleName.member.value
        return None


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)

    users = relationship("User", secondary="user_roles", back_populates="roles")


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (CheckConstraint("copies >= 0", name="ck_books_copies"),)

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    genre = Column(String, nullable=True)
    isbn = Column(String, unique=True, nullable=False)
    copies = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    borrows = relationship(
        "Borrow", back_populates="book", cascade="all, delete"
    )

    @property
    def active_borrow_count(self) -> int:
        return sum(1 for b in self.borrows if b.status == BorrowStatus.borrowed)

    @property
    def available_copies(self) -> int:
        # Not clamped: may go negative when copies drop below active loans.
        return self.copies - self.active_borrow_count


class Borrow(Base):
    __tablename__ = "borrows"
    __table_args__ = (
        Index(
            "uq_borrows_active_user_book",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 0"),
            postgresql_where=text("status = 0"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    status = Column(Integer, nullable=False, default=BorrowStatus.borrowed.value)
    due_at = Column(Date, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="borrows")
    book = relationship("Book", back_populates="borrows")

    @property
    def is_active(self) -> bool:
        return self.status == BorrowStatus.borrowed
