"""Role-based access rules for every gated operation.

``POLICY`` maps an operation to the roles allowed to perform it. ``None`` in
an allowed set stands for an authenticated patron (a user without a staff
role). Operations missing from the table are public.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from errors import ForbiddenError, UnauthorizedError
from models import Role
from security import Principal


class Operation(str, Enum):
    AUTHOR_LIST = "author:list"
    AUTHOR_GET = "author:get"
    AUTHOR_CREATE = "author:create"
    AUTHOR_UPDATE = "author:update"
    AUTHOR_DELETE = "author:delete"
    BOOK_LIST = "book:list"
    BOOK_GET = "book:get"
    BOOK_AVAILABILITY = "book:availability"
    BOOK_CREATE = "book:create"
    BOOK_UPDATE = "book:update"
    BOOK_DELETE = "book:delete"
    BORROWER_LIST = "borrower:list"
    BORROWER_GET = "borrower:get"
    BORROWER_CREATE = "borrower:create"
    BORROWER_UPDATE = "borrower:update"
    BORROWER_DELETE = "borrower:delete"
    LOAN_LIST = "loan:list"
    LOAN_GET = "loan:get"
    LOAN_CREATE = "loan:create"
    LOAN_RETURN = "loan:return"
    USER_REGISTER = "user:register"
    USER_LOGIN = "user:login"
    USER_GET = "user:get"
    USER_UPDATE = "user:update"


SENIOR: FrozenSet[Optional[Role]] = frozenset({Role.SENIOR_STAFF})
STAFF: FrozenSet[Optional[Role]] = frozenset({Role.SENIOR_STAFF, Role.JUNIOR_STAFF})
AUTHENTICATED: FrozenSet[Optional[Role]] = frozenset({Role.SENIOR_STAFF, Role.JUNIOR_STAFF, None})

POLICY: Dict[Operation, FrozenSet[Optional[Role]]] = {
    Operation.AUTHOR_CREATE: SENIOR,
    Operation.AUTHOR_UPDATE: SENIOR,
    Operation.AUTHOR_DELETE: SENIOR,
    Operation.BOOK_CREATE: SENIOR,
    Operation.BOOK_UPDATE: SENIOR,
    Operation.BOOK_DELETE: SENIOR,
    Operation.USER_GET: SENIOR,
    Operation.USER_UPDATE: SENIOR,
    Operation.BORROWER_LIST: STAFF,
    Operation.BORROWER_GET: STAFF,
    Operation.BORROWER_DELETE: STAFF,
    Operation.LOAN_LIST: STAFF,
    Operation.LOAN_GET: STAFF,
    Operation.BORROWER_CREATE: AUTHENTICATED,
    Operation.BORROWER_UPDATE: AUTHENTICATED,
    Operation.LOAN_CREATE: AUTHENTICATED,
    Operation.LOAN_RETURN: AUTHENTICATED,
}


def is_public(operation: Operation) -> bool:
    return operation not in POLICY


def authorize(principal: Optional[Principal], operation: Operation) -> None:
    """Raise unless ``principal`` may perform ``operation``.

    A missing principal is Unauthorized; a principal whose role is not in
    the operation's allowed set is Forbidden.
    """
    if is_public(operation):
        return
    allowed = POLICY[operation]
    if principal is None:
        raise UnauthorizedError("Authentication is required")
    if principal.role not in allowed:
        raise ForbiddenError(f"Role is not permitted to perform {operation.value}")


def authorize_owner(principal: Principal, user_id: str) -> None:
    """Patrons may only act on records that belong to their own account; staff may act for anyone."""
    if principal.role is None and principal.subject != user_id:
        raise ForbiddenError("Patrons can only manage their own borrower profile")
