from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from lending.models import BorrowStatus


class BookBase(BaseModel):
    title: str
    author: str
    genre: str | None = None
    isbn: str
    copies: int = Field(ge=0)


class BookCreate(BookBase):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[str] = None
    isbn: Optional[str] = None
    copies: Optional[int] = Field(None, ge=0)


class BookSchema(BookBase):
    id: int
    copies: int
    available_copies: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookSearchParams(BaseModel):
    q: Optional[str] = None
    search_string: Optional[str] = None

    @property
    def term(self) -> str:
        return (self.q or self.search_string or "").strip()


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=128)
    password_confirmation: str
    roles: List[str] = []


class UserSchema(BaseModel):
    email: str
    roles: List[str]


class UserBrief(BaseModel):
    id: int
    email: str

    class Config:
        from_attributes = True


class SessionUser(UserBrief):
    roles: List[str]


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    message: str
    user: SessionUser
    token: str


class MessageSchema(BaseModel):
    message: str


class BorrowCreate(BaseModel):
    book_id: int
    due_at: Optional[date] = None
    # Only honoured for librarians lending on behalf of a member.
    user_id: Optional[int] = None


class BorrowUpdate(BaseModel):
    status: Optional[str] = None
    due_at: Optional[date] = None


class BorrowSchema(BaseModel):
    id: int
    user_id: int
    book_id: int
    status: str
    due_at: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    book: Optional[BookSchema] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_name(cls, value):
        if isinstance(value, int):
            return BorrowStatus(value).name
        return value

    class Config:
        from_attributes = True


class LibrarianBorrowSchema(BorrowSchema):
    """Borrow as librarians see it, with the borrowing member attached."""

    user: Optional[UserBrief] = None


class LibraryStats(BaseModel):
    total_books: int
    total_borrowed: int
    available_books: int


class UserStats(BaseModel):
    borrowed_count: int
    due_today_count: int
    overdue_count: int


class MemberDueBooks(BaseModel):
    user_id: int
    email: str
    due_books_count: int


class DashboardSchema(BaseModel):
    role: Optional[str] = None
    library_stats: Optional[LibraryStats] = None
    user_stats: UserStats
    # Members get BorrowSchema entries; the user field stays unset for them.
    borrows: List[LibrarianBorrowSchema]
    all_borrows: Optional[List[LibrarianBorrowSchema]] = None
    due_today_borrows: List[LibrarianBorrowSchema]
    members_with_due_books: Optional[List[MemberDueBooks]] = None
