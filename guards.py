"""
Session principal, request context and the access guard chain.

A guard is a plain function taking a `RequestContext` and returning one of
`Proceed`, `Redirect` or `Deny`. Guards never raise; `guarded()` adapts a
chain to a FastAPI dependency and turns a redirect into a `GuardRedirect`
signal that the app answers with a 303.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, MutableMapping, Optional

from fastapi import HTTPException, Request
from pydantic import ValidationError as SchemaError

from logs import get_logger
from schemas import ROLE_RANK, Principal

logger = get_logger(__name__)

LOGIN_PATH = "/auth/login"
ADMIN_HOME = "/admin"
PUBLIC_HOME = "/"

SESSION_PRINCIPAL = "manager"
SESSION_RETURN_TO = "returnTo"
NOTICE_SUCCESS = "success"
NOTICE_ERROR = "error"

LOGIN_REQUIRED = "Please log in to the management system first."
INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
SUPERADMIN_REQUIRED = "Super administrator privileges required"


# Session binding

def flash(session: MutableMapping[str, Any], kind: str, message: str) -> None:
    session[kind] = message


def pop_notices(session: MutableMapping[str, Any]) -> Dict[str, Optional[str]]:
    """Read both one-shot notice slots and clear them."""
    return {
        NOTICE_SUCCESS: session.pop(NOTICE_SUCCESS, None),
        NOTICE_ERROR: session.pop(NOTICE_ERROR, None),
    }


def bind_principal(session: MutableMapping[str, Any], principal: Principal) -> None:
    session[SESSION_PRINCIPAL] = principal.model_dump(mode="json")


def session_principal(session: MutableMapping[str, Any]) -> Optional[Principal]:
    raw = session.get(SESSION_PRINCIPAL)
    if not raw:
        return None
    try:
        return Principal.model_validate(raw)
    except SchemaError:
        logger.warning("discarding malformed session principal")
        session.pop(SESSION_PRINCIPAL, None)
        return None


def pop_return_to(session: MutableMapping[str, Any], default: str = ADMIN_HOME) -> str:
    return session.pop(SESSION_RETURN_TO, None) or default


@dataclass
class RequestContext:
    session: MutableMapping[str, Any]
    path: str
    principal: Optional[Principal] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return cls(session=request.session, path=path)


# Guard results

class Proceed:
    def __repr__(self):
        return "Proceed()"

    def __eq__(self, other):
        return isinstance(other, Proceed)


@dataclass(frozen=True)
class Redirect:
    target: str


@dataclass(frozen=True)
class Deny:
    reason: str


PROCEED = Proceed()

Guard = Callable[[RequestContext], Any]


# Guards

def attach_current_principal(ctx: RequestContext):
    ctx.principal = session_principal(ctx.session)
    return PROCEED


def require_authenticated(ctx: RequestContext):
    if ctx.principal is not None:
        return PROCEED
    ctx.session[SESSION_RETURN_TO] = ctx.path
    flash(ctx.session, NOTICE_ERROR, LOGIN_REQUIRED)
    return Redirect(LOGIN_PATH)


def require_guest(ctx: RequestContext):
    if ctx.principal is None:
        return PROCEED
    return Redirect(pop_return_to(ctx.session))


def has_role(principal: Optional[Principal], min_role: str) -> bool:
    if principal is None:
        return False
    return ROLE_RANK.get(principal.role, 0) >= ROLE_RANK[min_role]


def require_role(min_role: str) -> Guard:
    if min_role not in ROLE_RANK:
        raise ValueError(f"Unknown role {min_role!r}")
    if min_role == "superadmin":
        notice, fallback = SUPERADMIN_REQUIRED, ADMIN_HOME
    else:
        notice, fallback = INSUFFICIENT_PERMISSIONS, PUBLIC_HOME

    def role_guard(ctx: RequestContext):
        if has_role(ctx.principal, min_role):
            return PROCEED
        logger.info(
            "role check failed",
            path=ctx.path,
            required=min_role,
            username=ctx.principal.username if ctx.principal else None,
        )
        flash(ctx.session, NOTICE_ERROR, notice)
        return Redirect(fallback)

    role_guard.__name__ = f"require_role_{min_role}"
    return role_guard


require_admin = require_role("admin")
require_superadmin = require_role("superadmin")


def run_guards(ctx: RequestContext, *guards: Guard):
    """Evaluate guards in order; the first non-proceed result wins."""
    for guard in guards:
        result = guard(ctx)
        if result != PROCEED:
            return result
    return PROCEED


# FastAPI adapter

class GuardRedirect(Exception):
    def __init__(self, target: str):
        super().__init__(target)
        self.target = target


def guarded(*guards: Guard):
    chain: List[Guard] = [attach_current_principal, *guards]

    async def guard_dep(request: Request) -> RequestContext:
        ctx = RequestContext.from_request(request)
        result = run_guards(ctx, *chain)
        if isinstance(result, Redirect):
            raise GuardRedirect(result.target)
        if isinstance(result, Deny):
            raise HTTPException(status_code=403, detail=result.reason)
        return ctx

    return guard_dep
