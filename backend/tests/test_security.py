"""
Test suite for session resolution and actor access checks.

Test Categories:
- Signed session tokens (round trip, expiry, tampering, missing claims)
- Identity gate (missing, banned, suspended)
- Actor role and ownership checks
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from storefront.core.config import get_settings
from storefront.core.errors import ForbiddenError, UnauthorizedError
from storefront.core.security import (
    AccountStatus,
    Actor,
    ActorRole,
    Identity,
    InMemorySessionResolver,
    TokenSessionResolver,
    UserRole,
    create_session_token,
    require_access,
    require_active_identity,
    require_privileged,
)


@pytest.fixture
def identity() -> Identity:
    return Identity(id="user-1", name="Budi", email="budi@example.com")


# ============================================================================
# Signed Token Tests
# ============================================================================


class TestTokenSessionResolver:
    async def test_round_trip(self, identity: Identity) -> None:
        token = create_session_token(identity)

        resolved = await TokenSessionResolver().resolve(token)

        assert resolved == identity

    async def test_admin_claims(self) -> None:
        admin = Identity(id="admin-1", role=UserRole.ADMIN, name="Admin Toko")

        resolved = await TokenSessionResolver().resolve(create_session_token(admin))

        assert resolved.is_admin

    async def test_expired_token(self, identity: Identity) -> None:
        token = create_session_token(identity, expires_delta=timedelta(seconds=-1))

        assert await TokenSessionResolver().resolve(token) is None

    async def test_wrong_secret(self, identity: Identity) -> None:
        token = create_session_token(identity)

        assert await TokenSessionResolver(secret_key="another-secret").resolve(token) is None

    async def test_empty_and_garbage_tokens(self) -> None:
        resolver = TokenSessionResolver()

        assert await resolver.resolve("") is None
        assert await resolver.resolve("not.a.token") is None

    async def test_missing_subject(self) -> None:
        settings = get_settings()
        token = jwt.encode(
            {"role": "user", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        assert await TokenSessionResolver().resolve(token) is None

    async def test_invalid_role_claim(self) -> None:
        settings = get_settings()
        token = jwt.encode(
            {
                "sub": "user-1",
                "role": "superuser",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        assert await TokenSessionResolver().resolve(token) is None


class TestInMemorySessionResolver:
    async def test_register_and_resolve(self, identity: Identity) -> None:
        resolver = InMemorySessionResolver()
        resolver.register("tok", identity)

        assert await resolver.resolve("tok") == identity
        assert await resolver.resolve("other") is None


# ============================================================================
# Identity Gate Tests
# ============================================================================


class TestRequireActiveIdentity:
    def test_active_identity_passes(self, identity: Identity) -> None:
        assert require_active_identity(identity) is identity

    def test_missing_identity(self) -> None:
        with pytest.raises(UnauthorizedError):
            require_active_identity(None)

    @pytest.mark.parametrize("status", [AccountStatus.BANNED, AccountStatus.SUSPENDED])
    def test_non_active_identity(self, status: AccountStatus) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            require_active_identity(Identity(id="user-9", status=status))

        assert exc_info.value.user_message == "Akun Anda sedang dinonaktifkan. Hubungi admin."


# ============================================================================
# Actor Tests
# ============================================================================


class TestActor:
    def test_from_identity(self, identity: Identity) -> None:
        actor = Actor.from_identity(identity)

        assert actor == Actor(id="user-1", role=ActorRole.CUSTOMER, name="Budi")
        assert actor.is_customer
        assert not actor.is_privileged

    def test_admin_from_identity(self) -> None:
        actor = Actor.from_identity(Identity(id="admin-1", role=UserRole.ADMIN))

        assert actor.role == ActorRole.ADMIN
        assert actor.can_access("user-1")

    def test_system_actor(self) -> None:
        actor = Actor.system("payment-webhook")

        assert actor.role == ActorRole.SYSTEM
        assert actor.name == "payment-webhook"
        assert actor.is_privileged

    def test_require_access(self) -> None:
        customer = Actor(id="user-1", role=ActorRole.CUSTOMER)

        require_access(customer, "user-1", "order")
        with pytest.raises(ForbiddenError):
            require_access(customer, "user-2", "order")

    def test_require_privileged(self) -> None:
        require_privileged(Actor.system(), "list orders")

        with pytest.raises(ForbiddenError) as exc_info:
            require_privileged(Actor(id="user-1", role=ActorRole.CUSTOMER), "list orders")

        assert exc_info.value.user_message == "Hanya admin yang dapat melakukan tindakan ini."
