"""Actor extraction and the injected admin check for FastAPI routes.

The upstream authentication layer verifies the session and forwards the
caller's fid in ``X-Actor-Fid``. Services never see identity policy: routes
depend on :func:`require_admin`, which consults whatever predicate
:func:`get_admin_predicate` provides (overridable in tests and deployments).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Annotated

from fastapi import Depends, Header

from .core.config import settings
from .core.errors import AuthenticationError, AuthorizationError

AdminPredicate = Callable[[int], bool]


def allowlist_predicate(fids: Iterable[int]) -> AdminPredicate:
    allowed = frozenset(int(fid) for fid in fids)

    def is_admin(fid: int) -> bool:
        return fid in allowed

    return is_admin


def get_admin_predicate() -> AdminPredicate:
    return allowlist_predicate(settings.admin_fids)


def get_actor_fid(x_actor_fid: Annotated[str | None, Header(alias="X-Actor-Fid")] = None) -> int:
    if not x_actor_fid:
        raise AuthenticationError("Authentication required")
    try:
        fid = int(x_actor_fid)
    except ValueError as exc:
        raise AuthenticationError("Invalid actor fid") from exc
    if fid <= 0:
        raise AuthenticationError("Invalid actor fid")
    return fid


def require_admin(
    actor_fid: int = Depends(get_actor_fid),
    is_admin: AdminPredicate = Depends(get_admin_predicate),
) -> int:
    if not is_admin(actor_fid):
        raise AuthorizationError("Admin access required", fid=actor_fid)
    return actor_fid


__all__ = [
    "AdminPredicate",
    "allowlist_predicate",
    "get_actor_fid",
    "get_admin_predicate",
    "require_admin",
]
