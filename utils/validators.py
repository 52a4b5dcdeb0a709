import re
from typing import List, Optional

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")


class ISBNValidator:
    """Catalog ISBNs are stored as exactly 13 digits, no separators."""

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        return len(isbn) == 13 and isbn.isdigit()


class ContactValidator:
    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(EMAIL_RE.match(email))

    @staticmethod
    def is_valid_phone(phone: Optional[str]) -> bool:
        if phone is None:
            return False
        return bool(PHONE_RE.match(phone))


class PasswordValidator:
    MIN_LENGTH = 8
    # bcrypt only looks at the first 72 bytes
    MAX_BYTES = 72

    @staticmethod
    def problems(password: Optional[str]) -> List[str]:
        """Return every rule the password breaks; an empty list means it is acceptable."""
        if not password:
            return ["Password is required"]
        found = []
        if len(password) < PasswordValidator.MIN_LENGTH:
            found.append(f"Password must be at least {PasswordValidator.MIN_LENGTH} characters long")
        if len(password.encode("utf-8")) > PasswordValidator.MAX_BYTES:
            found.append(f"Password must not exceed {PasswordValidator.MAX_BYTES} bytes")
        if not any(c.isupper() for c in password):
            found.append("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in password):
            found.append("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in password):
            found.append("Password must contain at least one digit")
        return found


class TextValidator:
    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not text.strip()

    @staticmethod
    def length_problem(text: Optional[str], label: str, max_length: int,
                       min_length: int = 1, required: bool = True) -> Optional[str]:
        if text is None or (required and not text.strip()):
            return f"{label} is required" if required else None
        if len(text) < min_length:
            return f"{label} must be at least {min_length} characters long"
        if len(text) > max_length:
            return f"{label} must not exceed {max_length} characters"
        return None
