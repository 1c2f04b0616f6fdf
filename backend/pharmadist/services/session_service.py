# Overview: Bearer token sessions and the per-request actor context.

"""
Session tokens.

Tokens are 32 random bytes (hex), stored only as their SHA-256. tenant_id
is captured when the token is issued and is the tenant context of every
request made with it.

ActorContext is what services see of the caller: who, which tenant, which
permissions, and (for branch-scoped actors) which city.
"""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import SessionToken, Tenant, User
from ..permissions import permissions_for_role
from ..time_utils import utcnow

SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)

# Marker for a branch-scoped actor with no branch assigned
BRANCH_MISSING = "__MISSING__"


@dataclass(frozen=True)
class ActorContext:
    user_id: int | None
    tenant_id: int
    permissions: frozenset = frozenset()
    branch_city: str | None = None
    display_name: str | None = None

    def has(self, permission_code: str) -> bool:
        return permission_code in self.permissions

    @property
    def is_branch_scoped(self) -> bool:
        return "SCOPE_BRANCH" in self.permissions

    def require_branch_city(self) -> str | None:
        """
        The city this actor is confined to, or None when unscoped.

        A scoped actor without a branch cannot act on any city yet.
        """
        if not self.is_branch_scoped:
            return None
        if not self.branch_city or self.branch_city == BRANCH_MISSING:
            raise ConflictError("Select your branch before continuing")
        return self.branch_city

    def ensure_city(self, city: str | None, message: str = "Outside of your branch city") -> None:
        scoped_city = self.require_branch_city()
        if scoped_city is None:
            return
        if (city or "").strip().upper() != scoped_city:
            raise ForbiddenError(message)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def actor_for_user(user: User) -> ActorContext:
    permissions = permissions_for_role(user.role)
    branch_city = None
    if "SCOPE_BRANCH" in permissions:
        city = user.warehouse.city if user.warehouse else None
        branch_city = (city or "").strip().upper() or BRANCH_MISSING
    return ActorContext(
        user_id=user.id,
        tenant_id=user.tenant_id,
        permissions=permissions,
        branch_city=branch_city,
        display_name=user.display_name,
    )


def issue_token(user_id: int, *, ttl: timedelta = SESSION_ABSOLUTE_TIMEOUT) -> tuple[SessionToken, str]:
    """
    Create a session for a user. Returns (record, plaintext token).

    The plaintext is never stored; the caller must hand it out now.
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise ConflictError("User is not active")
    tenant = db.session.query(Tenant).filter_by(id=user.tenant_id).first()
    if not tenant or not tenant.is_active:
        raise ConflictError("Tenant is not active")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> tuple[User, ActorContext] | None:
    """
    Resolve a bearer token to (user, actor), or None when the token is
    unknown, expired, revoked, or its user/tenant is inactive.
    """
    now = utcnow()
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not session or session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active or session.tenant is None or not session.tenant.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    actor = actor_for_user(user)
    # Tenant context comes from the session, not the user row
    if actor.tenant_id != session.tenant_id:
        actor = ActorContext(
            user_id=actor.user_id,
            tenant_id=session.tenant_id,
            permissions=actor.permissions,
            branch_city=actor.branch_city,
            display_name=actor.display_name,
        )
    return user, actor


def revoke_token(token: str) -> bool:
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not session:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
