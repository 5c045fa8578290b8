import enum
from typing import Iterable


class RoleName(str, enum.Enum):
    librarian = "librarian"
    member = "member"

    @classmethod
    def parse(cls, value) -> "RoleName | None":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Operation(str, enum.Enum):
    list_books = "books.index"
    show_book = "books.show"
    search_books = "books.search"
    create_book = "books.create"
    update_book = "books.update"
    delete_book = "books.destroy"
    list_borrows = "borrows.index"
    show_borrow = "borrows.show"
    create_borrow = "borrows.create"
    update_borrow = "borrows.update"
    show_dashboard = "dashboard.show"


PERMISSIONS: dict[tuple[RoleName, Operation], bool] = {
    (RoleName.librarian, Operation.list_books): True,
    (RoleName.librarian, Operation.show_book): True,
    (RoleName.librarian, Operation.search_books): True,
    (RoleName.librarian, Operation.create_book): True,
    (RoleName.librarian, Operation.update_book): True,
    (RoleName.librarian, Operation.delete_book): True,
    (RoleName.librarian, Operation.list_borrows): True,
    (RoleName.librarian, Operation.show_borrow): True,
    (RoleName.librarian, Operation.create_borrow): True,
    (RoleName.librarian, Operation.update_borrow): True,
    (RoleName.librarian, Operation.show_dashboard): True,
    (RoleName.member, Operation.list_books): True,
    (RoleName.member, Operation.show_book): True,
    (RoleName.member, Operation.search_books): True,
    (RoleName.member, Operation.create_book): False,
    (RoleName.member, Operation.update_book): False,
    (RoleName.member, Operation.delete_book): False,
    (RoleName.member, Operation.list_borrows): True,
    (RoleName.member, Operation.show_borrow): True,
    (RoleName.member, Operation.create_borrow): True,
    (RoleName.member, Operation.update_borrow): False,
    (RoleName.member, Operation.show_dashboard): True,
}


def validate_permissions(table: dict) -> None:
    """Raise RuntimeError unless ``table`` covers every (role, operation) pair."""
    missing = [
        (role.value, op.value)
        for role in RoleName
        for op in Operation
        if (role, op) not in table
    ]
    if missing:
        raise RuntimeError(f"Permission table is missing entries: {missing}")
    unknown = [key for key in table if not isinstance(key[0], RoleName)]
    if unknown:
        raise RuntimeError(f"Permission table has unknown roles: {unknown}")


validate_permissions(PERMISSIONS)


def is_allowed(role_names: Iterable[str], operation: Operation) -> bool:
    for name in role_names:
        role = RoleName.parse(name)
        if role is not None and PERMISSIONS[(role, operation)]:
            return True
    return False
