"""Password hashing and bearer tokens."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from config import settings
from errors import UnauthorizedError
from models import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The caller behind a verified token. ``role`` is None for patrons."""

    subject: str
    role: Optional[Role] = None


class PasswordHasher:
    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or settings.bcrypt_rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Password could not be checked against the stored hash")
            return False


class TokenService:
    """Issues and verifies signed JWTs carrying a subject and an optional role."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None,
                 issuer: Optional[str] = None, audience: Optional[str] = None,
                 expires_minutes: Optional[int] = None):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.issuer = issuer or settings.jwt_issuer
        self.audience = audience or settings.jwt_audience
        self.expires_minutes = expires_minutes if expires_minutes is not None else settings.jwt_expiration_minutes

    def issue(self, subject: str, role: Optional[Role] = None) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": subject,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(minutes=self.expires_minutes),
        }
        if role is not None:
            claims["role"] = role.value
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """Decode ``token`` and return its principal.

        Raises UnauthorizedError for a bad signature, a wrong issuer or
        audience, an expired token or an unknown role.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise UnauthorizedError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError("Invalid token") from e

        try:
            role = Role.parse(claims.get("role"))
        except ValueError as e:
            raise UnauthorizedError("Invalid token") from e
        return Principal(subject=claims["sub"], role=role)
