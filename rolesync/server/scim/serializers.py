"""Render directory rows as SCIM resources and compute role-group ids.

Role-groups are virtual: a scope's ADMIN/MEMBER/VIEWER groups are never
stored, their membership is whoever currently holds the role. Their ids are
derived from ``(scope_id, role)`` so the same group always gets the same id.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from uuid import UUID
from uuid import uuid5

from rolesync.configs.constants import SCIM_GROUP_ROLES
from rolesync.configs.constants import ScopeRole
from rolesync.server.scim.models import ScimEmail
from rolesync.server.scim.models import ScimGroupMember
from rolesync.server.scim.models import ScimGroupResource
from rolesync.server.scim.models import ScimMeta
from rolesync.server.scim.models import ScimName
from rolesync.server.scim.models import ScimUserResource

# Namespace for role-group ids, scheme v1: uuid5(namespace, "{scope_id}:{role}").
# IdPs cache group ids across syncs. Changing this constant (or the name
# format) re-keys every group already provisioned and is a breaking migration.
ROLE_GROUP_NAMESPACE_V1 = UUID("6b1d3c2e-9f4a-5e8b-a7c0-3d2f1e0b9a84")


def role_group_id(scope_id: str, role: ScopeRole | str) -> str:
    """Deterministic SCIM id of the ``role`` group in ``scope_id``."""
    role_name = role.value if isinstance(role, ScopeRole) else role
    return str(uuid5(ROLE_GROUP_NAMESPACE_V1, f"{scope_id}:{role_name}"))


def resolve_role_group(scope_id: str, scim_id: str) -> ScopeRole | None:
    """Map a SCIM group id back to the exposed role it was computed from."""
    for role in SCIM_GROUP_ROLES:
        if role_group_id(scope_id, role) == scim_id:
            return role
    return None


def role_group_display_name(role: ScopeRole, scope_slug: str | None) -> str:
    return f"{scope_slug}:{role.value}" if scope_slug else role.value


def parse_role_from_display_name(
    display_name: str, scope_slug: str | None
) -> ScopeRole | None:
    """Parse a ``"{slug}:{ROLE}"`` display name (bare ``ROLE`` without a slug).

    The slug must match exactly, the role case-insensitively, and only roles
    exposed as groups are accepted.
    """
    if scope_slug:
        slug_part, sep, role_part = display_name.partition(":")
        if not sep or slug_part.strip() != scope_slug:
            return None
    else:
        role_part = display_name

    role_part = role_part.strip().upper()
    for role in SCIM_GROUP_ROLES:
        if role.value == role_part:
            return role
    return None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScimUserRow:
    """Flattened view of a scope member for rendering."""

    user_id: str
    email: str
    name: str | None
    deactivated_at: datetime.datetime | None
    external_id: str | None = None


def user_to_scim(row: ScimUserRow, base_url: str) -> ScimUserResource:
    return ScimUserResource(
        id=row.user_id,
        externalId=row.external_id,
        userName=row.email,
        name=ScimName(formatted=row.name or ""),
        emails=[ScimEmail(value=row.email, type="work", primary=True)],
        active=row.deactivated_at is None,
        meta=ScimMeta(resourceType="User", location=f"{base_url}/Users/{row.user_id}"),
    )


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScimGroupMemberRow:
    user_id: str
    email: str


def role_group_to_scim(
    scope_id: str,
    role: ScopeRole,
    members: list[ScimGroupMemberRow],
    base_url: str,
    scope_slug: str | None = None,
) -> ScimGroupResource:
    group_id = role_group_id(scope_id, role)
    return ScimGroupResource(
        id=group_id,
        displayName=role_group_display_name(role, scope_slug),
        members=[
            ScimGroupMember(
                value=m.user_id,
                display=m.email,
                ref=f"{base_url}/Users/{m.user_id}",
            )
            for m in members
        ],
        meta=ScimMeta(resourceType="Group", location=f"{base_url}/Groups/{group_id}"),
    )
