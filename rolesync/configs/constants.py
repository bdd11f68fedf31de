from enum import Enum


class ScopeRole(str, Enum):
    """Roles a member can hold within a scope. A member holds exactly one."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


# Roles exposed as SCIM role-groups. OWNER is never exposed and never mutated
# through provisioning.
SCIM_GROUP_ROLES: tuple[ScopeRole, ...] = (
    ScopeRole.ADMIN,
    ScopeRole.MEMBER,
    ScopeRole.VIEWER,
)

# Role a member falls back to when removed from a role-group
DEFAULT_SCOPE_ROLE = ScopeRole.MEMBER


class ScimResourceType(str, Enum):
    USER = "User"
    GROUP = "Group"


class AuditScope(str, Enum):
    SCOPE = "SCOPE"


class AuditAction(str, Enum):
    SCIM_GROUP_UPDATE = "SCIM_GROUP_UPDATE"
    SCIM_USER_UPDATE = "SCIM_USER_UPDATE"
    SCIM_USER_DEACTIVATE = "SCIM_USER_DEACTIVATE"
    SCIM_USER_REACTIVATE = "SCIM_USER_REACTIVATE"
    SCIM_USER_DELETE = "SCIM_USER_DELETE"


class AuditTargetType(str, Enum):
    SCOPE_MEMBER = "SCOPE_MEMBER"
    ROLE_GROUP = "ROLE_GROUP"
