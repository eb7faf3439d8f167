"""Access guard: resolve the caller and check organization rights."""

import logging
import uuid
from dataclasses import dataclass

import jwt
from sqlalchemy.orm import Session

from promo_credits.models.user import User
from promo_credits.services.auth import decode_token, get_user_by_id
from promo_credits.services.exceptions import AuthError, Forbidden

logger = logging.getLogger(__name__)

ELEVATED_ROLES = frozenset({"admin"})
SPONSOR_ROLES = frozenset({"sponsor_admin", "sponsor_user"})


@dataclass(frozen=True)
class Caller:
    id: uuid.UUID
    role: str
    org_id: uuid.UUID | None = None

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(id=user.id, role=user.role, org_id=user.org_id)


def resolve_caller(db: Session, token: str) -> Caller:
    """Resolve a bearer token to a caller. Raises AuthError on any failure."""
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except jwt.PyJWTError:
        raise AuthError("Invalid token")

    if payload.get("type") != "access":
        raise AuthError("Invalid token type")

    try:
        user_id = uuid.UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthError("Invalid token payload")

    user = get_user_by_id(db, user_id)
    if user is None:
        raise AuthError("User not found")
    if not user.is_active:
        raise AuthError("User account is deactivated")
    if not user.is_verified:
        raise AuthError("User email is not verified")

    return Caller.from_user(user)


def authorize_org_action(caller: Caller, target_org_id: uuid.UUID) -> bool:
    """True if the caller may spend or refund credits for ``target_org_id``."""
    if caller.is_elevated:
        return True
    return caller.role in SPONSOR_ROLES and caller.org_id == target_org_id


def require_sponsor(caller: Caller) -> None:
    """Only sponsors and admins may touch promotions at all."""
    if caller.role not in SPONSOR_ROLES and not caller.is_elevated:
        raise Forbidden("Only sponsors can manage promotions")


def require_org_admin(caller: Caller) -> None:
    """Only an organization's sponsor admin (or a platform admin) may change its settings."""
    if caller.role != "sponsor_admin" and not caller.is_elevated:
        raise Forbidden("Only organization admins can update settings")


def require_org_action(caller: Caller, target_org_id: uuid.UUID) -> None:
    require_sponsor(caller)
    if not authorize_org_action(caller, target_org_id):
        logger.warning(
            "Caller %s (role=%s, org=%s) denied action on org %s",
            caller.id,
            caller.role,
            caller.org_id,
            target_org_id,
        )
        raise Forbidden("You cannot act on behalf of this organization")
