"""Admin tooling."""

from .commands import build_admin_router
from .policy import AdminAction, AuthorizationPolicy, SingleAdminPolicy
from .service import AdminService

__all__ = [
    "build_admin_router",
    "AdminAction",
    "AuthorizationPolicy",
    "SingleAdminPolicy",
    "AdminService",
]
