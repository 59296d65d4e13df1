"""
Session identity resolution and actor model.

Authentication itself lives outside this service. The lifecycle engine only
needs the narrow contract ``resolve(token) -> Identity | None``; this module
provides that contract, a signed-token implementation built on python-jose and
an in-memory implementation for tests and local development.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError as PydanticValidationError

from storefront.core.config import get_settings
from storefront.core.errors import ForbiddenError, UnauthorizedError
from storefront.core.logging import get_logger

logger = get_logger(__name__)


class UserRole(str, Enum):
    """Role attached to a resolved session."""

    USER = "user"
    ADMIN = "admin"


class AccountStatus(str, Enum):
    """Account standing as reported by the identity provider."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"


class Identity(BaseModel):
    """Identity resolved from an opaque session token."""

    id: str
    role: UserRole = UserRole.USER
    status: AccountStatus = AccountStatus.ACTIVE
    name: str = ""
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class ActorRole(str, Enum):
    """Who is driving a lifecycle transition."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Actor recorded on transitions and used for role checks."""

    id: str
    role: ActorRole
    name: str = ""

    @classmethod
    def from_identity(cls, identity: Identity) -> "Actor":
        role = ActorRole.ADMIN if identity.is_admin else ActorRole.CUSTOMER
        return cls(id=identity.id, role=role, name=identity.name)

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(id="system", role=ActorRole.SYSTEM, name=name)

    @property
    def is_customer(self) -> bool:
        return self.role == ActorRole.CUSTOMER

    @property
    def is_privileged(self) -> bool:
        """Admins and the system may act on any customer's records."""
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)

    def can_access(self, owner_id: str) -> bool:
        return self.is_privileged or self.id == owner_id


def require_privileged(actor: Actor, action: str) -> None:
    """
    Raises:
        ForbiddenError: If the actor is a customer
    """
    if not actor.is_privileged:
        raise ForbiddenError(
            f"{actor.role.value} may not {action}",
            user_message="Hanya admin yang dapat melakukan tindakan ini.",
            actor_id=actor.id,
            action=action,
        )


def require_access(actor: Actor, owner_id: str, resource: str) -> None:
    """
    Raises:
        ForbiddenError: If a customer touches another customer's record
    """
    if not actor.can_access(owner_id):
        raise ForbiddenError(
            f"User {actor.id} may not access {resource} of {owner_id}",
            actor_id=actor.id,
            resource=resource,
        )


class SessionResolver(Protocol):
    """Contract for resolving a session token to an identity."""

    async def resolve(self, token: str) -> Optional[Identity]:
        ...


def require_active_identity(identity: Optional[Identity]) -> Identity:
    """
    Reject missing or non-active identities before any lifecycle logic runs.

    Args:
        identity: Identity returned by a SessionResolver

    Returns:
        The identity when it is present and active

    Raises:
        UnauthorizedError: If no identity was resolved
        ForbiddenError: If the account is suspended or banned
    """
    if identity is None:
        raise UnauthorizedError("Session token did not resolve to an identity")

    if identity.status != AccountStatus.ACTIVE:
        logger.warning(
            "Rejected non-active identity",
            user_id=identity.id,
            status=identity.status.value,
        )
        raise ForbiddenError(
            "Account is not active",
            user_message="Akun Anda sedang dinonaktifkan. Hubungi admin.",
            user_id=identity.id,
            status=identity.status.value,
        )

    return identity


def create_session_token(
    identity: Identity,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Sign a session token carrying the identity claims.

    Args:
        identity: Identity to encode
        expires_delta: Optional custom lifetime

    Returns:
        Encoded token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.session_token_expire_minutes)
    )
    claims: dict[str, Any] = {
        "sub": identity.id,
        "role": identity.role.value,
        "status": identity.status.value,
        "name": identity.name,
        "email": identity.email,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


class TokenSessionResolver:
    """Resolve identities from tokens signed with the shared secret."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        settings = get_settings()
        self._secret_key = secret_key or settings.secret_key
        self._algorithm = algorithm or settings.jwt_algorithm

    async def resolve(self, token: str) -> Optional[Identity]:
        if not token:
            return None

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as e:
            logger.warning(
                "Session token rejected",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        subject = payload.get("sub")
        if not subject:
            logger.warning("Session token missing 'sub' claim")
            return None

        try:
            return Identity(
                id=subject,
                role=payload.get("role", UserRole.USER.value),
                status=payload.get("status", AccountStatus.ACTIVE.value),
                name=payload.get("name", ""),
                email=payload.get("email", ""),
            )
        except PydanticValidationError as e:
            logger.warning("Session token carries invalid claims", error=str(e))
            return None


class InMemorySessionResolver:
    """Token to identity map, used by tests and local development."""

    def __init__(self, sessions: Optional[dict[str, Identity]] = None):
        self._sessions: dict[str, Identity] = dict(sessions or {})

    def register(self, token: str, identity: Identity) -> None:
        self._sessions[token] = identity

    async def resolve(self, token: str) -> Optional[Identity]:
        return self._sessions.get(token)
