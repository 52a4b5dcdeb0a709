from typing import Dict, List, Optional


class LibraryError(Exception):
    """Base class for errors the API turns into problem responses."""

    status_code = 500
    title = "Internal Server Error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(LibraryError):
    """Client-correctable input problem, keyed by field name."""

    status_code = 400
    title = "Validation Error"

    def __init__(self, errors: Dict[str, List[str]], detail: str = "One or more validation errors occurred") -> None:
        super().__init__(detail)
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})


class NotFoundError(LibraryError):
    status_code = 404
    title = "Resource Not Found"

    def __init__(self, entity: str, key: Optional[object] = None) -> None:
        if key is None:
            super().__init__(f"{entity} was not found.")
        else:
            super().__init__(f"{entity} ({key}) was not found.")
        self.entity = entity
        self.key = key


class ConflictError(LibraryError):
    status_code = 409
    title = "Conflict"


class UnauthorizedError(LibraryError):
    status_code = 401
    title = "Unauthorized"


class ForbiddenError(LibraryError):
    status_code = 403
    title = "Forbidden"
