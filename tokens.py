"""Signed identity tokens.

A token carries the subject id, email and role as they were at issue time.
Verification is purely cryptographic plus an expiry check: it never reads
the datastore, so a role change only takes effect once a new token is issued.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError
from pydantic import BaseModel, ValidationError

from errors import ExpiredToken, InvalidSignature, MalformedToken
from models import Role
from settings import get_settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as resolved from a verified token."""

    id: int
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


class TokenClaims(BaseModel):
    sub: int
    email: str
    role: Role
    iat: int
    exp: int


class TokenService:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    def issue(self, subject_id: int, email: str, role: Role) -> str:
        now = self.clock()
        claims = {
            "sub": str(subject_id),
            "email": email,
            "role": Role(role).value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """Return the embedded principal or raise a TokenError subclass.

        Checks run parse -> signature -> expiry, so an expired token whose
        signature is valid always yields ExpiredToken.
        """
        try:
            raw_claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken(str(exc)) from exc

        try:
            claims = TokenClaims.model_validate(raw_claims)
        except ValidationError as exc:
            raise MalformedToken("unexpected claim shape") from exc

        try:
            jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                # expiry is checked below against our own clock
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            # signature was fine; a registered claim has the wrong type
            raise MalformedToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        if int(self.clock().timestamp()) >= claims.exp:
            raise ExpiredToken("token has expired")

        return Principal(id=claims.sub, email=claims.email, role=claims.role)


@lru_cache()
def get_token_service() -> TokenService:
    settings = get_settings()
    return TokenService(
        secret=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(hours=settings.jwt_expire_hours),
    )
