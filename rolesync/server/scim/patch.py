"""SCIM PATCH operation parser (RFC 7644 §3.5.2).

Identity providers use PATCH to make incremental changes instead of
replacing the whole resource with PUT. Common operations include:

  - Deactivating a user: ``replace`` ``active`` with ``false``
  - Adding group members: ``add`` to ``members``
  - Removing group members: ``remove`` from ``members`` or from
    ``members[value eq "..."]``

User and Group patches have different semantics and separate entry points.
Both turn the loosely typed operation payloads into closed result types
right here; nothing past this module sees raw ``value`` objects. This module
does NOT touch the database.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from typing import Literal

from rolesync.server.scim.models import ScimPatchOperation
from rolesync.server.scim.models import ScimPatchOperationType


class PatchParseError(ValueError):
    """Raised when a PATCH operation is not supported or malformed."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


@dataclass(frozen=True, slots=True)
class UserPatchResult:
    """Fields a User PATCH changes. ``None`` means untouched."""

    active: bool | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class GroupMemberAction:
    op: Literal["add", "remove"]
    user_id: str


# Azure AD style single member removal: members[value eq "user-id"]
_MEMBER_FILTER_RE = re.compile(r'^members\[value\s+eq\s+"([^"]+)"\]$')


# ---------------------------------------------------------------------------
# User PATCH
# ---------------------------------------------------------------------------


def parse_user_patch(operations: list[ScimPatchOperation]) -> UserPatchResult:
    """Parse PATCH operations for a User resource.

    Supported:
      - ``add`` / ``replace`` on ``active`` (boolean)
      - ``add`` / ``replace`` on ``name.formatted`` (string)
      - ``add`` / ``replace`` without a path and an object value, e.g.
        ``{"active": false, "name": {"formatted": "..."}}``

    ``remove`` is never accepted; deactivation is ``active: false``.

    Raises:
        PatchParseError: On an unsupported op or path, or a mistyped value.
    """
    active: bool | None = None
    name: str | None = None

    for operation in operations:
        if operation.op not in (
            ScimPatchOperationType.ADD,
            ScimPatchOperationType.REPLACE,
        ):
            raise PatchParseError(
                f"Unsupported op '{operation.op.value}' for User resource"
            )

        path = operation.path
        value = operation.value

        if path == "active":
            active = _require_bool(value, "active")
        elif path == "name.formatted":
            name = _require_str(value, "name.formatted")
        elif not path and isinstance(value, dict):
            if "active" in value:
                active = _require_bool(value["active"], "active")
            name_obj = value.get("name")
            if isinstance(name_obj, dict) and isinstance(
                name_obj.get("formatted"), str
            ):
                name = name_obj["formatted"]
        else:
            raise PatchParseError(
                f"Unsupported PATCH path '{path or '(none)'}' for User resource"
            )

    return UserPatchResult(active=active, name=name)


def _require_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise PatchParseError(f"{field} must be a boolean")
    return value


def _require_str(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise PatchParseError(f"{field} must be a string")
    return value


# ---------------------------------------------------------------------------
# Group PATCH
# ---------------------------------------------------------------------------


def parse_group_patch(
    operations: list[ScimPatchOperation],
) -> list[GroupMemberAction]:
    """Parse PATCH operations for a role-group into member actions.

    Supported:
      - ``add`` with path ``members`` and a list of ``{"value": userId}``
      - ``remove`` with path ``members`` and a list of ``{"value": userId}``
      - ``remove`` with path ``members[value eq "userId"]`` (no value)

    Actions are returned in submission order.

    Raises:
        PatchParseError: On any other op/path combination, a malformed member
            list, or a bracket-filter remove that also carries a value.
    """
    actions: list[GroupMemberAction] = []

    for operation in operations:
        op = operation.op
        path = operation.path

        if path == "members" and op in (
            ScimPatchOperationType.ADD,
            ScimPatchOperationType.REMOVE,
        ):
            action_op: Literal["add", "remove"] = (
                "add" if op == ScimPatchOperationType.ADD else "remove"
            )
            actions.extend(
                GroupMemberAction(op=action_op, user_id=user_id)
                for user_id in _parse_member_values(operation.value)
            )
            continue

        if (
            op == ScimPatchOperationType.REMOVE
            and path is not None
            and path.startswith("members[")
        ):
            match = _MEMBER_FILTER_RE.match(path)
            if not match:
                raise PatchParseError(f"Invalid members filter syntax: {path}")
            if operation.value not in (None, [], {}):
                # Two member selectors in one operation; refuse to pick one
                raise PatchParseError(
                    "Remove with a members filter path must not carry a value"
                )
            actions.append(GroupMemberAction(op="remove", user_id=match.group(1)))
            continue

        raise PatchParseError(
            f"Unsupported PATCH op '{op.value}' with path "
            f"'{path or '(none)'}' for Group resource"
        )

    return actions


def _parse_member_values(value: Any) -> list[str]:
    if not isinstance(value, list):
        raise PatchParseError("members value must be an array")

    user_ids: list[str] = []
    for item in value:
        if not isinstance(item, dict) or not isinstance(item.get("value"), str):
            raise PatchParseError(
                "Each member must be an object with a string 'value' field"
            )
        user_ids.append(item["value"])
    return user_ids
