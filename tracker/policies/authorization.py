"""
Centralized authorization policies for FastAPI routes.

``authorize`` is a pure decision function over (actor, action, target). It
never raises for a denial: the denial is returned as a ``Decision`` and only
turned into an HTTP error by ``enforce`` at the route boundary.

The module also provides the FastAPI dependencies that resolve the acting
user from a bearer JWT issued by the external identity provider.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from tracker.dependencies import get_user_store
from tracker.errors import NotFound
from tracker.models import Action, ProgressReport, Role
from tracker.settings import get_settings
from tracker.store import UserStore

logger = logging.getLogger(__name__)

# A missing Authorization header means an unauthenticated actor, not an error
security = HTTPBearer(auto_error=False)


class DenialReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason) -> "Decision":
        return cls(allowed=False, reason=reason)


ALLOW = Decision.allow()
DENY_UNAUTHENTICATED = Decision.deny(DenialReason.UNAUTHENTICATED)
DENY_FORBIDDEN = Decision.deny(DenialReason.FORBIDDEN)


class IndicatorOwnership(Protocol):
    """Indicator ownership map: indicator id -> id of its managing user."""

    def manager_id_for(self, indicator_id: Optional[int]) -> Optional[int]:
        ...


class CurrentUser:
    """Represents the currently authenticated user (a per-request snapshot)."""

    def __init__(self, user_id: int, email: str, role: Role = Role.GUEST):
        self.id = user_id
        self.email = email
        self.role = Role(role)

    def __repr__(self) -> str:
        return f"CurrentUser(id={self.id!r}, email={self.email!r}, role={self.role.value!r})"


# For create the target is the indicator id named in the payload;
# for read/update/delete it is the existing report.
Target = Union[ProgressReport, int, None]


def _indicator_id_of(target: Target) -> Optional[int]:
    if isinstance(target, ProgressReport):
        return target.indicator_id
    return target


def authorize(
    actor: Optional[CurrentUser],
    action: Action,
    target: Target,
    ownership: IndicatorOwnership,
) -> Decision:
    """
    Decide whether ``actor`` may perform ``action`` on a progress report.

    Rules:
        - unauthenticated / guest: read published reports only
        - contributor: read everything; create/update only on indicators
          they manage; never delete
        - manager: everything
    """
    action = Action(action)

    if action is Action.READ:
        if actor is not None and actor.role in (Role.CONTRIBUTOR, Role.MANAGER):
            return ALLOW
        if isinstance(target, ProgressReport) and not target.draft:
            return ALLOW
        return DENY_UNAUTHENTICATED if actor is None else DENY_FORBIDDEN

    if actor is None:
        return DENY_UNAUTHENTICATED

    if actor.role is Role.MANAGER:
        return ALLOW

    if actor.role is Role.CONTRIBUTOR and action in (Action.CREATE, Action.UPDATE):
        manager_id = ownership.manager_id_for(_indicator_id_of(target))
        if manager_id is not None and manager_id == actor.id:
            return ALLOW

    return DENY_FORBIDDEN


def authorize_manager_resource(actor: Optional[CurrentUser], action: Action) -> Decision:
    """Public reads; writes reserved to managers (indicators, due dates)."""
    action = Action(action)
    if action is Action.READ:
        return ALLOW
    if actor is None:
        return DENY_UNAUTHENTICATED
    if actor.role is Role.MANAGER:
        return ALLOW
    return DENY_FORBIDDEN


def report_draft_filter(actor: Optional[CurrentUser]) -> Optional[bool]:
    """
    Draft filter for listing reports visible to ``actor``.

    Returns False (published only) for guests and unauthenticated actors,
    None (no filter) for contributors and managers.
    """
    if actor is not None and actor.role in (Role.CONTRIBUTOR, Role.MANAGER):
        return None
    return False


def enforce(
    decision: Decision,
    actor: Optional[CurrentUser],
    action: Action,
    target_desc: str,
    hide_as_not_found: bool = False,
) -> None:
    """
    Raise the HTTP error matching a denial; do nothing when allowed.

    With ``hide_as_not_found`` every denial becomes a 404 so that the
    existence of a hidden record is not leaked.
    """
    if decision.allowed:
        return

    actor_desc = f"user {actor.id} ({actor.role.value})" if actor else "unauthenticated actor"
    logger.warning(
        f"Access denied: {actor_desc} attempted to {Action(action).value} {target_desc} "
        f"({decision.reason.value})"
    )

    if hide_as_not_found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{target_desc} not found",
        )
    if decision.reason is DenialReason.UNAUTHENTICATED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f"Access denied to {target_desc}",
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token with the identity provider's claim layout.

    Tokens are issued by the identity provider in production; this helper is
    used by tests and local development.
    """
    settings = get_settings()
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(hours=settings["access_token_expire_hours"])
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, settings["jwt_secret_key"], algorithm=settings["jwt_algorithm"])


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify and decode a JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings["jwt_secret_key"], algorithms=[settings["jwt_algorithm"]])
    except JWTError:
        return None


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    users: UserStore = Depends(get_user_store),
) -> Optional[CurrentUser]:
    """
    FastAPI dependency that resolves the acting user.

    This dependency:
    - Returns None when no bearer token is presented (unauthenticated actor)
    - Raises HTTPException(401) if the token is invalid, expired, or names
      a user that no longer exists
    - Otherwise returns a CurrentUser snapshot with the user's stored role
    """
    if credentials is None:
        return None

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise _invalid_credentials()

    user_id = payload.get("user_id")
    email = payload.get("sub")
    if user_id is None and email is None:
        raise _invalid_credentials()

    # If user_id is not in token, fall back to the email subject
    if user_id is not None:
        try:
            user = users.find(int(user_id))
        except (NotFound, TypeError, ValueError):
            user = None
    else:
        user = users.find_by_email(email)

    if user is None:
        logger.warning(f"Token presented for unknown user (sub={email!r}, user_id={user_id!r})")
        raise _invalid_credentials()

    return CurrentUser(user_id=user.id, email=user.email, role=user.role)


def require_user(actor: Optional[CurrentUser] = Depends(get_current_actor)) -> CurrentUser:
    """
    FastAPI dependency that requires an authenticated user.

    Usage:
        @app.get("/users/me")
        async def me(user: CurrentUser = Depends(require_user)):
            ...
    """
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor
