"""
Role and permission evaluation.

Roles are totally ordered by ROLE_HIERARCHY; PERMISSIONS maps each permission
key to the roles holding it. The check_* functions are pure and raise
Unauthorized when there is no caller, Forbidden when the caller lacks the
privilege. The require_* factories wrap them as FastAPI dependencies.
"""
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from fastapi import Depends, Header, Request

from database import Store, get_db
from errors import Forbidden, ServerError, Unauthorized
from identity import verify_token

User = Dict[str, Any]


class Role(str, Enum):
    CUSTOMER = "customer"
    CONTRIBUTOR = "contributor"
    AFFILIATE = "affiliate"
    ADMIN = "admin"


ROLE_HIERARCHY: Dict[Role, int] = {
    Role.CUSTOMER: 1,
    Role.CONTRIBUTOR: 2,
    Role.AFFILIATE: 2,
    Role.ADMIN: 3,
}

_EVERYONE = frozenset(Role)
_ADMIN = frozenset({Role.ADMIN})

PERMISSIONS: Dict[str, frozenset] = {
    # Products
    "view:products": _EVERYONE,
    "create:products": _ADMIN,
    "edit:products": _ADMIN,
    "delete:products": _ADMIN,

    # Blog
    "view:blog": _EVERYONE,
    "create:blog": frozenset({Role.CONTRIBUTOR, Role.ADMIN}),
    "edit:blog": frozenset({Role.CONTRIBUTOR, Role.ADMIN}),
    "delete:blog": _ADMIN,
    "publish:blog": _ADMIN,

    # Orders
    "view:orders": _EVERYONE,
    "view:all-orders": _ADMIN,
    "manage:orders": _ADMIN,

    # Users
    "view:users": _ADMIN,
    "edit:users": _ADMIN,
    "manage:roles": _ADMIN,

    # Analytics
    "view:analytics": frozenset({Role.AFFILIATE, Role.ADMIN}),
    "view:advanced-analytics": _ADMIN,

    # Segments
    "view:segments": _ADMIN,
    "export:segments": _ADMIN,
}

RoleSpec = Union[str, Role, Iterable[Union[str, Role]]]


def to_role(value: Optional[str]) -> Optional[Role]:
    """Resolve a stored role name; missing means customer, unrecognised means no role."""
    if value is None:
        return Role.CUSTOMER
    try:
        return Role(value)
    except ValueError:
        return None


def _role_list(allowed: RoleSpec) -> List[Role]:
    if isinstance(allowed, (str, Role)):
        allowed = [allowed]
    return [Role(r) for r in allowed]


def _require_caller(user: Optional[User]) -> Optional[Role]:
    if not user:
        raise Unauthorized()
    return to_role(user.get("role"))


# ---------------------- Pure checks ----------------------

def check_role(user: Optional[User], allowed: RoleSpec) -> None:
    role = _require_caller(user)
    roles = _role_list(allowed)
    if role not in roles:
        raise Forbidden(f"Access denied. Required role: {' or '.join(r.value for r in roles)}")


def check_permission(user: Optional[User], permission: str) -> None:
    role = _require_caller(user)
    holders = PERMISSIONS.get(permission)
    if holders is None:
        raise ServerError(f"Invalid permission configuration: {permission}")
    if role not in holders:
        raise Forbidden(f"Permission denied: {permission}")


def check_minimum_role(user: Optional[User], minimum: Union[str, Role]) -> None:
    role = _require_caller(user)
    level = ROLE_HIERARCHY.get(role, 0) if role else 0
    if level < ROLE_HIERARCHY[Role(minimum)]:
        raise Forbidden(f"Insufficient permissions. Minimum role required: {Role(minimum).value}")


def check_ownership_or_role(user: Optional[User], allowed: RoleSpec, owner_id: Optional[str]) -> None:
    role = _require_caller(user)
    if role in _role_list(allowed):
        return
    if owner_id and owner_id == user.get("id"):
        return
    raise Forbidden("Access denied. You can only access your own resources.")


def has_permission(role: Optional[str], permission: str) -> bool:
    holders = PERMISSIONS.get(permission)
    resolved = to_role(role)
    return bool(holders) and resolved in holders


def role_permissions(role: Union[str, Role]) -> List[str]:
    resolved = Role(role)
    return [key for key, holders in PERMISSIONS.items() if resolved in holders]


def is_admin(user: Optional[User]) -> bool:
    return bool(user) and to_role(user.get("role")) is Role.ADMIN


# ---------------------- Dependencies ----------------------

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _load_user(store: Store, token: str) -> User:
    claims = verify_token(token)
    user = store.get("users", claims["sub"])
    if user is None:
        raise Unauthorized("User not found")
    user.setdefault("role", "customer")
    return user


def get_current_user(authorization: Optional[str] = Header(None), store: Store = Depends(get_db)) -> User:
    token = _bearer_token(authorization)
    if not token:
        raise Unauthorized("Access token required")
    return _load_user(store, token)


def get_optional_user(authorization: Optional[str] = Header(None), store: Store = Depends(get_db)) -> Optional[User]:
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        return _load_user(store, token)
    except Unauthorized:
        return None


def _gate(check: Callable[[User, Request], None]):
    """Wrap a caller check as a dependency, keeping the check for authorize_request."""
    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        check(user, request)
        return user
    dependency.check = check
    return dependency


def _check_admin(user: User, request: Request) -> None:
    if not is_admin(user):
        raise Forbidden("Admin access required")


def require_role(allowed: RoleSpec):
    return _gate(lambda user, request: check_role(user, allowed))


require_admin = _gate(_check_admin)


def require_permission(permission: str):
    return _gate(lambda user, request: check_permission(user, permission))


def require_minimum_role(minimum: Union[str, Role]):
    return _gate(lambda user, request: check_minimum_role(user, minimum))


def require_ownership_or_role(allowed: RoleSpec, param: str = "user_id"):
    """Allow the listed roles, or a caller whose id equals the ``param`` path parameter."""
    return _gate(lambda user, request: check_ownership_or_role(user, allowed, request.path_params.get(param)))


def authorize_request(request: Request, store: Store) -> None:
    """Run the caller checks of the matched route without its body.

    FastAPI parses the body before it resolves dependencies, so a rejected body
    would otherwise hide a missing token or an insufficient role.
    """
    dependant = getattr(request.scope.get("route"), "dependant", None)
    if dependant is None:
        return
    for sub in dependant.dependencies:
        check = getattr(sub.call, "check", None)
        if sub.call is not get_current_user and check is None:
            continue
        user = get_current_user(request.headers.get("authorization"), store)
        if check is not None:
            check(user, request)
