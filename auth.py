"""Authentication and authorization for the API.

Two gates run for every protected route, always in this order:

1. Role-class gate: ``require(RouteClass.X)`` authenticates the bearer token
   (failure -> 401 Unauthenticated) and then checks the caller's role against
   the route class (failure -> 403 Forbidden).
2. Ownership gate: handlers pass a ``Scope`` to the store functions in
   ``crud``, which fold the owner predicate into the same query that loads the
   row. A row that exists but belongs to someone else is reported exactly like
   a missing row (404).

The principal is taken from the token alone (see ``tokens``); the database is
not consulted to resolve identity.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Annotated, Callable, Optional

import structlog
from fastapi import Depends, Request

from errors import Forbidden, TokenError, Unauthenticated
from models import Role
from tokens import Principal, TokenService, get_token_service

logger = structlog.get_logger(__name__)

__all__ = [
    "Principal",
    "RouteClass",
    "ROUTE_CLASS_ROLES",
    "Scope",
    "get_current_principal",
    "get_optional_principal",
    "require",
]


class RouteClass(str, enum.Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ORGANIZATION_OWNER = "organization_owner"
    ADMIN = "admin"


# None means "any role"; PUBLIC does not even need a token.
ROUTE_CLASS_ROLES: dict[RouteClass, Optional[frozenset[Role]]] = {
    RouteClass.PUBLIC: None,
    RouteClass.AUTHENTICATED: None,
    RouteClass.ORGANIZATION_OWNER: frozenset({Role.EMPLOYER, Role.COMPANY}),
    RouteClass.ADMIN: frozenset({Role.ADMIN}),
}

_missing = set(RouteClass) - set(ROUTE_CLASS_ROLES)
if _missing:
    raise RuntimeError(f"route classes without a role rule: {sorted(c.value for c in _missing)}")


def role_admitted(route_class: RouteClass, role: Role) -> bool:
    allowed = ROUTE_CLASS_ROLES[route_class]
    return allowed is None or role in allowed


# Helper to extract Authorization header (works with FastAPI DI)
def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _resolve(token: str, tokens: TokenService) -> Principal:
    try:
        return tokens.verify(token)
    except TokenError as exc:
        # reason is logged, never returned
        logger.info("Token rejected", reason=exc.reason)
        raise Unauthenticated()


# --- FastAPI dependencies ---

def get_current_principal(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    tokens: TokenService = Depends(get_token_service),
) -> Principal:
    token = _bearer_token(authorization)
    if token is None:
        raise Unauthenticated()
    return _resolve(token, tokens)


def get_optional_principal(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    tokens: TokenService = Depends(get_token_service),
) -> Optional[Principal]:
    """Like get_current_principal, but anonymous callers get None.

    A header that is present but invalid is still rejected.
    """
    if authorization is None:
        return None
    return get_current_principal(authorization, tokens)


def require(route_class: RouteClass) -> Callable[..., Optional[Principal]]:
    """Dependency factory enforcing the role-class gate for a route.

    Usage:
        @app.post("/api/employer/jobs")
        def create_job(principal: Principal = Depends(require(RouteClass.ORGANIZATION_OWNER))):
            ...
    """
    if route_class is RouteClass.PUBLIC:

        def public_dependency(
            principal: Optional[Principal] = Depends(get_optional_principal),
        ) -> Optional[Principal]:
            return principal

        return public_dependency

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_admitted(route_class, principal.role):
            logger.warning(
                "Role gate denied",
                user_id=principal.id,
                role=principal.role.value,
                route_class=route_class.value,
            )
            raise Forbidden()
        return principal

    return dependency


@dataclass(frozen=True)
class Scope:
    """Which rows a caller may act on.

    ``owner_id`` None means unrestricted, which only ``Scope.admin`` can build.
    """

    principal: Principal
    owner_id: Optional[int]

    @classmethod
    def owned_by(cls, principal: Principal) -> "Scope":
        return cls(principal=principal, owner_id=principal.id)

    @classmethod
    def admin(cls, principal: Principal) -> "Scope":
        if not principal.is_admin:
            raise Forbidden()
        return cls(principal=principal, owner_id=None)

    @classmethod
    def for_principal(cls, principal: Principal) -> "Scope":
        """Items are mutable by their owner or by an admin."""
        if principal.is_admin:
            return cls.admin(principal)
        return cls.owned_by(principal)

    @property
    def is_unrestricted(self) -> bool:
        return self.owner_id is None

    def apply(self, query, owner_column):
        if self.owner_id is None:
            return query
        return query.filter(owner_column == self.owner_id)

    def predicate(self, owner_column):
        """Owner clause for Core update/delete statements (None when unrestricted)."""
        if self.owner_id is None:
            return None
        return owner_column == self.owner_id
