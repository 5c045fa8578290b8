from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# Not found
class BookNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, book_id):
        self.book_id = book_id
        super().__init__("Book not found")


class BorrowNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, borrow_id):
        self.borrow_id = borrow_id
        super().__init__("Borrow not found")


class UserNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__("User not found")


# Ledger invariants
class NoCopiesAvailableError(LibraryException):
    """Raised when every copy of a book is already lent out."""

    status_code = 422

    def __init__(self, book_id):
        self.book_id = book_id
        super().__init__("Book has no available copies")


class AlreadyBorrowedError(LibraryException):
    """Raised when the borrower still holds an active loan of the book."""

    status_code = 422

    def __init__(self, book_id):
        self.book_id = book_id
        super().__init__(
            "Book is already borrowed by this user, return it before borrowing again"
        )


class InvalidStatusError(LibraryException):
    status_code = 422

    def __init__(self, message: str):
        super().__init__(f"Invalid status: {message}")


# Access
class UnauthorizedError(LibraryException):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(LibraryException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


# Input
class RecordValidationError(LibraryException):
    status_code = 422

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class SearchTermMissingError(LibraryException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self):
        super().__init__("Search parameter is required")


class DatabaseError(LibraryException):
    def __init__(self, operation: str, details: str):
        super().__init__(f"Database error during {operation}: {details}")


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request parameters. Please check your input."},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    logger.error(f"Library error ({exc.status_code}): {exc.message}")
    content = {"detail": exc.message}
    if isinstance(exc, RecordValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
