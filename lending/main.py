import os
from contextlib import asynccontextmanager
import logging
from fastapi import APIRouter, FastAPI, Depends, status
from sqlalchemy.orm import Session
from dotenv import load_dotenv
from typing import List

from lending import crud, ledger, reporting
from lending.auth import (
    authenticate_user,
    get_current_user,
    invalidate_token,
    regenerate_token,
    require,
)
from lending.exceptions import ForbiddenError, UnauthorizedError, add_exception_handlers
from lending.models import User
from lending.permissions import Operation, RoleName
from lending.schemas import (
    BookCreate,
    BookSchema,
    BookSearchParams,
    BookUpdate,
    BorrowCreate,
    BorrowSchema,
    BorrowUpdate,
    DashboardSchema,
    LibrarianBorrowSchema,
    LoginRequest,
    LoginResponse,
    MessageSchema,
    UserCreate,
    UserSchema,
)
from lending.storage import get_db, init_db

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
load_dotenv()

API_VERSION = "v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing database")
        init_db()
    yield


app = FastAPI(
    title="Library Lending API",
    lifespan=lifespan,
    description="Books, borrows and dashboards for a small lending library",
    version="1.0.0",
)

add_exception_handlers(app)

api = APIRouter(prefix=f"/api/{API_VERSION}")


@app.get("/up")
def health():
    return {"status": "ok"}


@api.get("/")
def welcome():
    return {"message": "Welcome to the Books API", "version": API_VERSION}


# Users and sessions


@api.post("/users", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    db_user = crud.create_user_record(db, user)
    return {"email": db_user.email, "roles": db_user.role_names}


@api.post("/login", response_model=LoginResponse)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate_user(db, credentials.email, credentials.password)
    if user is None:
        logger.info(f"Failed login for {credentials.email}")
        raise UnauthorizedError("Invalid email or password")
    token = regenerate_token(db, user)
    return {
        "message": "Login successful",
        "user": {"id": user.id, "email": user.email, "roles": user.role_names},
        "token": token,
    }


@api.delete("/logout", response_model=MessageSchema)
def logout(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    invalidate_token(db, current_user)
    return {"message": "Logged out successfully"}


# Books


@api.get("/books", response_model=List[BookSchema])
def list_books(
    db: Session = Depends(get_db), _: User = Depends(require(Operation.list_books))
):
    return crud.list_books(db)


@api.post("/books/search", response_model=List[BookSchema])
def search_books(
    params: BookSearchParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.search_books)),
):
    return crud.search_books(db, params.term)


@api.get("/books/{book_id}", response_model=BookSchema)
def fetch_single_book(
    book_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.show_book)),
):
    return crud.get_book(db, book_id)


@api.post("/books", response_model=BookSchema, status_code=status.HTTP_201_CREATED)
def add_book(
    book: BookCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.create_book)),
):
    return crud.create_book(db, book)


@api.api_route("/books/{book_id}", methods=["PUT", "PATCH"], response_model=BookSchema)
def modify_book(
    book_id: int,
    book_update: BookUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.update_book)),
):
    return crud.update_book(db, book_id, book_update)


@api.delete("/books/{book_id}", response_model=MessageSchema)
def remove_book(
    book_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.delete_book)),
):
    crud.delete_book(db, book_id)
    return {"message": "Book deleted successfully"}


# Borrows


def borrow_schema_for(user: User):
    """Librarians see who holds each borrow; members only see their own."""
    if user.has_role(RoleName.librarian):
        return LibrarianBorrowSchema
    return BorrowSchema


def serialize_borrows(borrows, user: User):
    schema = borrow_schema_for(user)
    return [schema.model_validate(b) for b in borrows]


@api.get(
    "/borrows",
    response_model=List[LibrarianBorrowSchema],
    response_model_exclude_unset=True,
)
def list_borrows(
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Operation.list_borrows)),
):
    if current_user.has_role(RoleName.librarian):
        borrows = ledger.list_borrows(db)
    else:
        borrows = ledger.list_borrows(db, borrower_id=current_user.id)
    return serialize_borrows(borrows, current_user)


@api.get(
    "/borrows/{borrow_id}",
    response_model=LibrarianBorrowSchema,
    response_model_exclude_unset=True,
)
def show_borrow(
    borrow_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Operation.show_borrow)),
):
    borrow = ledger.get_borrow(db, borrow_id)
    if not current_user.has_role(RoleName.librarian) and borrow.user_id != current_user.id:
        raise ForbiddenError()
    return borrow_schema_for(current_user).model_validate(borrow)


@api.post(
    "/borrows",
    response_model=LibrarianBorrowSchema,
    response_model_exclude_unset=True,
    status_code=status.HTTP_201_CREATED,
)
def borrow_book_item(
    borrow_request: BorrowCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Operation.create_borrow)),
):
    borrower_id = current_user.id
    if borrow_request.user_id is not None and current_user.has_role(RoleName.librarian):
        borrower_id = borrow_request.user_id
    borrow = ledger.create_borrow(
        db, borrower_id, borrow_request.book_id, due_at=borrow_request.due_at
    )
    return borrow_schema_for(current_user).model_validate(borrow)


@api.patch("/borrows/{borrow_id}", response_model=LibrarianBorrowSchema)
def update_borrow(
    borrow_id: int,
    borrow_update: BorrowUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require(Operation.update_borrow)),
):
    return ledger.update_borrow_status(
        db, borrow_id, borrow_update.status, due_at=borrow_update.due_at
    )


# Dashboard


@api.get("/dashboard", response_model=DashboardSchema, response_model_exclude_unset=True)
def dashboard(
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Operation.show_dashboard)),
):
    report = reporting.build_report(db, current_user)
    for key in ("borrows", "all_borrows", "due_today_borrows"):
        if report[key] is not None:
            report[key] = serialize_borrows(report[key], current_user)
    return report


app.include_router(api)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting library API on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
