"""
Role-Based Access Control (RBAC) and the per-request context.

Every route receives an explicit ``RequestContext`` (who is acting, for which
company, with which permissions) instead of reading ambient globals.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from fastapi import HTTPException, status, Depends, Header
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.security import decode_token, security
from app.db.session import get_db


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class Permission(str, Enum):
    PIR_READ = "pir:read"
    PIR_CREATE = "pir:create"
    PIR_RESPOND = "pir:respond"
    PIR_REVIEW = "pir:review"
    PIR_COMMENT = "pir:comment"
    COMPANY_ADMIN = "company:admin"
    QUESTION_BANK_MANAGE = "question_bank:manage"


_MEMBER_PERMISSIONS = frozenset({
    Permission.PIR_READ,
    Permission.PIR_CREATE,
    Permission.PIR_RESPOND,
    Permission.PIR_REVIEW,
    Permission.PIR_COMMENT,
})

ROLE_PERMISSIONS = {
    Role.VIEWER: frozenset({Permission.PIR_READ}),
    Role.MEMBER: _MEMBER_PERMISSIONS,
    Role.ADMIN: _MEMBER_PERMISSIONS | {Permission.COMPANY_ADMIN},
    Role.OWNER: _MEMBER_PERMISSIONS | {Permission.COMPANY_ADMIN},
}


def permissions_for(role: Role, user_metadata: Optional[dict] = None) -> FrozenSet[str]:
    granted = {p.value for p in ROLE_PERMISSIONS.get(role, frozenset())}
    # Platform admins maintain the shared question bank
    if (user_metadata or {}).get("is_admin"):
        granted.add(Permission.QUESTION_BANK_MANAGE.value)
    return frozenset(granted)


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and on behalf of which company."""

    user_id: int
    email: Optional[str]
    company_id: int
    role: Role
    user_metadata: dict = field(default_factory=dict)
    permissions: FrozenSet[str] = frozenset()

    def has_permission(self, permission: str) -> bool:
        value = permission.value if isinstance(permission, Enum) else permission
        return value in self.permissions

    @property
    def display_name(self) -> str:
        return self.user_metadata.get("full_name") or self.email or f"user:{self.user_id}"

    def log_extra(self) -> dict:
        return {"user_id": self.user_id, "company_id": self.company_id}


async def get_request_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    x_company_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
) -> RequestContext:
    """Resolve the acting user and company from the bearer token."""
    from app.db.models import CompanyUser

    payload = decode_token(credentials.credentials)

    user_id_raw = payload.get("sub") or payload.get("user_id") or payload.get("id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    user_id = int(user_id_raw)

    company_id = x_company_id or payload.get("company_id")
    if company_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No company selected (X-Company-Id header)",
        )

    membership = db.query(CompanyUser).filter(
        CompanyUser.company_id == int(company_id),
        CompanyUser.user_id == user_id,
    ).first()
    if not membership:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this company",
        )

    try:
        role = Role(membership.role)
    except ValueError:
        role = Role.VIEWER

    user_metadata = payload.get("user_metadata") or {}
    return RequestContext(
        user_id=user_id,
        email=payload.get("email"),
        company_id=int(company_id),
        role=role,
        user_metadata=user_metadata,
        permissions=permissions_for(role, user_metadata),
    )


class PermissionChecker:
    """Dependency for checking a capability on the request context."""

    def __init__(self, permission: Permission):
        self.permission = permission

    async def __call__(self, ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if not ctx.has_permission(self.permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.permission.value}",
            )
        return ctx


# Convenience dependencies for common checks
require_reader = PermissionChecker(Permission.PIR_READ)
require_requester = PermissionChecker(Permission.PIR_CREATE)
require_responder = PermissionChecker(Permission.PIR_RESPOND)
require_reviewer = PermissionChecker(Permission.PIR_REVIEW)
require_commenter = PermissionChecker(Permission.PIR_COMMENT)
require_company_admin = PermissionChecker(Permission.COMPANY_ADMIN)
require_question_admin = PermissionChecker(Permission.QUESTION_BANK_MANAGE)
