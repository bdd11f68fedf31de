"""SCIM 2.0 API endpoints (RFC 7644).

This module provides the FastAPI router for User and Group provisioning.
Identity providers (Okta, Azure AD) call these endpoints to keep scope
memberships and roles in sync.

Groups are the scope's role-groups (ADMIN, MEMBER, VIEWER). They cannot be
created or deleted; changing a group's members rewrites member roles via the
reconciler. Every endpoint authenticates and rate-limits through
``require_scim_context`` before touching the store.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from rolesync.configs.app_configs import SCIM_BASE_URL
from rolesync.configs.app_configs import SCIM_DEFAULT_PAGE_SIZE
from rolesync.configs.app_configs import SCIM_MAX_PAGE_SIZE
from rolesync.configs.constants import AuditAction
from rolesync.configs.constants import AuditScope
from rolesync.configs.constants import AuditTargetType
from rolesync.configs.constants import SCIM_GROUP_ROLES
from rolesync.configs.constants import ScimResourceType
from rolesync.configs.constants import ScopeRole
from rolesync.db.engine import get_session
from rolesync.db.models import ScopeMember
from rolesync.db.scim import ScimDAL
from rolesync.server.scim.audit import AuditEvent
from rolesync.server.scim.audit import AuditSink
from rolesync.server.scim.audit import emit_audit_event
from rolesync.server.scim.audit import get_scim_audit_sink
from rolesync.server.scim.auth import require_scim_context
from rolesync.server.scim.auth import ScimAuthContext
from rolesync.server.scim.errors import NO_SUCH_MEMBER_DETAIL
from rolesync.server.scim.errors import OWNER_PROTECTED_DETAIL
from rolesync.server.scim.errors import ScimErrorKind
from rolesync.server.scim.filtering import extract_external_id_value
from rolesync.server.scim.filtering import filter_to_clause
from rolesync.server.scim.filtering import FilterParseError
from rolesync.server.scim.filtering import has_attribute
from rolesync.server.scim.filtering import parse_group_display_name_filter
from rolesync.server.scim.filtering import parse_scim_filter
from rolesync.server.scim.filtering import ScimFilterOr
from rolesync.server.scim.models import ScimGroupRequest
from rolesync.server.scim.models import ScimGroupResource
from rolesync.server.scim.models import ScimPatchRequest
from rolesync.server.scim.models import ScimUserRequest
from rolesync.server.scim.patch import parse_group_patch
from rolesync.server.scim.patch import parse_user_patch
from rolesync.server.scim.patch import PatchParseError
from rolesync.server.scim.reconciler import apply_member_actions
from rolesync.server.scim.reconciler import ReconcileError
from rolesync.server.scim.reconciler import ReconcileResult
from rolesync.server.scim.reconciler import replace_role_members
from rolesync.server.scim.reconciler import RoleGroupTarget
from rolesync.server.scim.request_body import scim_group_body
from rolesync.server.scim.request_body import scim_patch_body
from rolesync.server.scim.request_body import scim_user_body
from rolesync.server.scim.responses import scim_error_for
from rolesync.server.scim.responses import scim_list_response
from rolesync.server.scim.responses import scim_response
from rolesync.server.scim.serializers import parse_role_from_display_name
from rolesync.server.scim.serializers import resolve_role_group
from rolesync.server.scim.serializers import role_group_display_name
from rolesync.server.scim.serializers import role_group_id
from rolesync.server.scim.serializers import role_group_to_scim
from rolesync.server.scim.serializers import ScimGroupMemberRow
from rolesync.server.scim.serializers import ScimUserRow
from rolesync.server.scim.serializers import user_to_scim
from rolesync.utils.logger import setup_logger

logger = setup_logger()

# NOTE: The /Users and /Groups paths are mandated by SCIM
# (RFC 7644) and hardcoded by IdPs, so they keep their capitalization.
scim_router = APIRouter(prefix="/scim/v2", tags=["SCIM"])

# Ids longer than this are never valid and are not looked up
_MAX_RESOURCE_ID_LENGTH = 255


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _scope_slug(dal: ScimDAL, scope_id: str) -> str | None:
    scope = dal.get_scope(scope_id)
    return scope.slug if scope else None


def _user_row(member: ScopeMember, external_id: str | None) -> ScimUserRow:
    return ScimUserRow(
        user_id=member.user_id,
        email=member.user.email or "",
        name=member.user.name,
        deactivated_at=member.deactivated_at,
        external_id=external_id,
    )


def _render_user(
    dal: ScimDAL, context: ScimAuthContext, member: ScopeMember
) -> JSONResponse:
    external_ids = dal.get_external_ids(
        context.tenant_id, [member.user_id], ScimResourceType.USER
    )
    return scim_response(
        user_to_scim(_user_row(member, external_ids.get(member.user_id)), SCIM_BASE_URL)
    )


def _fetch_member_or_404(
    scim_id: str, dal: ScimDAL, context: ScimAuthContext
) -> ScopeMember | JSONResponse:
    """Resolve a SCIM user id (our user id, or the IdP's externalId) to the
    caller's scope membership, or return a 404 error."""
    not_found = scim_error_for(ScimErrorKind.NOT_FOUND, "User not found")
    if len(scim_id) > _MAX_RESOURCE_ID_LENGTH:
        return not_found

    member = dal.get_scope_member(context.scope_id, scim_id)
    if member:
        return member

    mapping = dal.get_external_mapping(
        context.tenant_id, scim_id, ScimResourceType.USER
    )
    if mapping:
        member = dal.get_scope_member(context.scope_id, mapping.internal_id)
        if member:
            return member
    return not_found


def _resolve_group_role(
    group_id: str, dal: ScimDAL, context: ScimAuthContext
) -> ScopeRole | None:
    """Match the computed role-group id first, then an IdP externalId."""
    if len(group_id) > _MAX_RESOURCE_ID_LENGTH:
        return None

    role = resolve_role_group(context.scope_id, group_id)
    if role:
        return role

    mapping = dal.get_external_mapping(
        context.tenant_id, group_id, ScimResourceType.GROUP
    )
    if mapping and mapping.scope_id == context.scope_id:
        return resolve_role_group(context.scope_id, mapping.internal_id)
    return None


def _build_group_resource(
    dal: ScimDAL, context: ScimAuthContext, role: ScopeRole, scope_slug: str | None
) -> ScimGroupResource:
    members = [
        ScimGroupMemberRow(user_id=m.user_id, email=m.user.email or "")
        for m in dal.list_role_members(context.scope_id, role)
    ]
    return role_group_to_scim(
        context.scope_id, role, members, SCIM_BASE_URL, scope_slug=scope_slug
    )


def _reconcile_error_response(result: ReconcileResult) -> JSONResponse:
    if result.error == ReconcileError.OWNER_PROTECTED:
        return scim_error_for(ScimErrorKind.OWNER_PROTECTED, OWNER_PROTECTED_DETAIL)
    return scim_error_for(ScimErrorKind.NO_SUCH_MEMBER, NO_SUCH_MEMBER_DETAIL)


def _user_audit_action(member: ScopeMember, active: bool | None) -> AuditAction:
    if active is False and member.deactivated_at is None:
        return AuditAction.SCIM_USER_DEACTIVATE
    if active is True and member.deactivated_at is not None:
        return AuditAction.SCIM_USER_REACTIVATE
    return AuditAction.SCIM_USER_UPDATE


def _audit_user(
    sink: AuditSink,
    context: ScimAuthContext,
    action: AuditAction,
    user_id: str,
    metadata: dict,
) -> None:
    emit_audit_event(
        sink,
        AuditEvent(
            scope=AuditScope.SCOPE,
            action=action,
            actor_id=context.audit_user_id,
            target_type=AuditTargetType.SCOPE_MEMBER,
            target_id=user_id,
            scope_id=context.scope_id,
            metadata=metadata,
        ),
    )


# ---------------------------------------------------------------------------
# User endpoints (RFC 7644 §3)
# ---------------------------------------------------------------------------


@scim_router.get("/Users", response_model=None)
def list_users(
    filter: str | None = Query(None),
    startIndex: int = Query(1, ge=1),
    count: int = Query(SCIM_DEFAULT_PAGE_SIZE, ge=0),
    context: ScimAuthContext = Depends(require_scim_context),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """List scope members with an optional SCIM filter and pagination.

    ``count`` above the page size limit is capped rather than rejected
    (RFC 7644 §3.4.2.4).
    """
    dal = ScimDAL(db_session)
    count = min(count, SCIM_MAX_PAGE_SIZE)

    clause = None
    user_id: str | None = None
    if filter:
        try:
            expression = parse_scim_filter(filter)
            clause = filter_to_clause(expression)
        except FilterParseError as e:
            return scim_error_for(ScimErrorKind.INVALID_FILTER, str(e))

        if has_attribute(expression, "externalId"):
            if isinstance(expression, ScimFilterOr):
                return scim_error_for(
                    ScimErrorKind.INVALID_FILTER,
                    "externalId filter is not supported in OR expressions",
                )
            external_id = extract_external_id_value(expression)
            mapping = (
                dal.get_external_mapping(
                    context.tenant_id, external_id, ScimResourceType.USER
                )
                if external_id is not None
                else None
            )
            if not mapping:
                return scim_list_response([], 0, startIndex)
            user_id = mapping.internal_id

    members, total = dal.list_scope_members(
        context.scope_id, clause, startIndex, count, user_id=user_id
    )
    external_ids = dal.get_external_ids(
        context.tenant_id, [m.user_id for m in members], ScimResourceType.USER
    )
    resources = [
        user_to_scim(_user_row(m, external_ids.get(m.user_id)), SCIM_BASE_URL)
        for m in members
    ]
    return scim_list_response(resources, total, startIndex)


@scim_router.get("/Users/{user_id}", response_model=None)
def get_user(
    user_id: str,
    context: ScimAuthContext = Depends(require_scim_context),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    dal = ScimDAL(db_session)

    result = _fetch_member_or_404(user_id, dal, context)
    if isinstance(result, JSONResponse):
        return result
    return _render_user(dal, context, result)


@scim_router.put("/Users/{user_id}", response_model=None)
def replace_user(
    user_id: str,
    user_resource: ScimUserRequest = Depends(scim_user_body),
    context: ScimAuthContext = Depends(require_scim_context),
    audit_sink: AuditSink = Depends(get_scim_audit_sink),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """Replace a user's provisioned state (RFC 7644 §3.5.1).

    Only ``active`` and ``name.formatted`` are owned by SCIM; identity
    fields such as the email belong to the account system.
    """
    dal = ScimDAL(db_session)

    result = _fetch_member_or_404(user_id, dal, context)
    if isinstance(result, JSONResponse):
        return result
    member = result

    if member.role == ScopeRole.OWNER and not user_resource.active:
        return scim_error_for(ScimErrorKind.OWNER_PROTECTED, OWNER_PROTECTED_DETAIL)

    action = _user_audit_action(member, user_resource.active)
    dal.set_member_active(member, user_resource.active)
    name = user_resource.name.formatted if user_resource.name else None
    if name is not None:
        dal.update_user_name(member.user, name)
    dal.commit()

    _audit_user(
        audit_sink,
        context,
        action,
        member.user_id,
        {"active": user_resource.active, "name": name},
    )
    return _render_user(dal, context, member)


@scim_router.patch("/Users/{user_id}", response_model=None)
def patch_user(
    user_id: str,
    patch_request: ScimPatchRequest = Depends(scim_patch_body),
    context: ScimAuthContext = Depends(require_scim_context),
    audit_sink: AuditSink = Depends(get_scim_audit_sink),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """Partially update a user (RFC 7644 §3.5.2).

    This is the primary deprovisioning path: Okta sends
    ``PATCH {"active": false}`` rather than DELETE.
    """
    dal = ScimDAL(db_session)

    try:
        patch = parse_user_patch(patch_request.Operations)
    except PatchParseError as e:
        return scim_error_for(ScimErrorKind.INVALID_PATH, e.detail)

    result = _fetch_member_or_404(user_id, dal, context)
    if isinstance(result, JSONResponse):
        return result
    member = result

    if member.role == ScopeRole.OWNER and patch.active is False:
        return scim_error_for(ScimErrorKind.OWNER_PROTECTED, OWNER_PROTECTED_DETAIL)

    action = _user_audit_action(member, patch.active)
    if patch.active is not None:
        dal.set_member_active(member, patch.active)
    if patch.name is not None:
        dal.update_user_name(member.user, patch.name)
    dal.commit()

    _audit_user(
        audit_sink,
        context,
        action,
        member.user_id,
        {"active": patch.active, "name": patch.name},
    )
    return _render_user(dal, context, member)


@scim_router.delete("/Users/{user_id}", status_code=204, response_model=None)
def delete_user(
    user_id: str,
    context: ScimAuthContext = Depends(require_scim_context),
    audit_sink: AuditSink = Depends(get_scim_audit_sink),
    db_session: Session = Depends(get_session),
) -> Response:
    """Remove a user from the scope (RFC 7644 §3.6).

    Only the scope membership is deleted; the user's tenant identity and
    account are left to the account system.
    """
    dal = ScimDAL(db_session)

    result = _fetch_member_or_404(user_id, dal, context)
    if isinstance(result, JSONResponse):
        return result
    member = result

    if member.role == ScopeRole.OWNER:
        return scim_error_for(ScimErrorKind.OWNER_PROTECTED, OWNER_PROTECTED_DETAIL)

    email = member.user.email
    removed_user_id = member.user_id
    dal.delete_scope_member(member)
    dal.commit()

    _audit_user(
        audit_sink,
        context,
        AuditAction.SCIM_USER_DELETE,
        removed_user_id,
        {"email": email},
    )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Group endpoints (RFC 7644 §3)
# ---------------------------------------------------------------------------


@scim_router.get("/Groups", response_model=None)
def list_groups(
    filter: str | None = Query(None),
    startIndex: int = Query(1, ge=1),
    count: int = Query(SCIM_DEFAULT_PAGE_SIZE, ge=0),
    context: ScimAuthContext = Depends(require_scim_context),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """List the scope's role-groups, optionally by ``displayName eq``."""
    dal = ScimDAL(db_session)
    count = min(count, SCIM_MAX_PAGE_SIZE)
    scope_slug = _scope_slug(dal, context.scope_id)

    roles = list(SCIM_GROUP_ROLES)
    if filter:
        try:
            display_name = parse_group_display_name_filter(filter)
        except FilterParseError as e:
            return scim_error_for(ScimErrorKind.INVALID_FILTER, str(e))
        roles = [
            role
            for role in roles
            if role_group_display_name(role, scope_slug).lower()
            == display_name.lower()
        ]

    total = len(roles)
    offset = startIndex - 1
    resources = [
        _build_group_resource(dal, context, role, scope_slug)
        for role in roles[offset : offset + count]
    ]
    return scim_list_response(resources, total, startIndex)


@scim_router.get("/Groups/{group_id}", response_model=None)
def get_group(
    group_id: str,
    context: ScimAuthContext = Depends(require_scim_context),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    dal = ScimDAL(db_session)

    role = _resolve_group_role(group_id, dal, context)
    if not role:
        return scim_error_for(ScimErrorKind.NOT_FOUND, "Group not found")

    scope_slug = _scope_slug(dal, context.scope_id)
    return scim_response(_build_group_resource(dal, context, role, scope_slug))


@scim_router.put("/Groups/{group_id}", response_model=None)
def replace_group(
    group_id: str,
    group_resource: ScimGroupRequest = Depends(scim_group_body),
    context: ScimAuthContext = Depends(require_scim_context),
    audit_sink: AuditSink = Depends(get_scim_audit_sink),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """Replace a role-group's membership (RFC 7644 §3.5.1)."""
    dal = ScimDAL(db_session)

    role = _resolve_group_role(group_id, dal, context)
    if not role:
        return scim_error_for(ScimErrorKind.NOT_FOUND, "Group not found")

    scope_slug = _scope_slug(dal, context.scope_id)
    if parse_role_from_display_name(group_resource.displayName, scope_slug) != role:
        return scim_error_for(
            ScimErrorKind.INVALID_REQUEST,
            "displayName must be "
            f"'{role_group_display_name(role, scope_slug)}' for this group",
        )

    target = RoleGroupTarget(
        scope_id=context.scope_id, tenant_id=context.tenant_id, role=role
    )
    result = replace_role_members(
        dal, target, [m.value for m in group_resource.members]
    )
    if not result.ok:
        return _reconcile_error_response(result)

    emit_audit_event(
        audit_sink,
        AuditEvent(
            scope=AuditScope.SCOPE,
            action=AuditAction.SCIM_GROUP_UPDATE,
            actor_id=context.audit_user_id,
            target_type=AuditTargetType.ROLE_GROUP,
            target_id=role_group_id(context.scope_id, role),
            scope_id=context.scope_id,
            metadata={
                "role": role.value,
                "added": len(result.added),
                "removed": len(result.removed),
            },
        ),
    )
    return scim_response(_build_group_resource(dal, context, role, scope_slug))


@scim_router.patch("/Groups/{group_id}", response_model=None)
def patch_group(
    group_id: str,
    patch_request: ScimPatchRequest = Depends(scim_patch_body),
    context: ScimAuthContext = Depends(require_scim_context),
    audit_sink: AuditSink = Depends(get_scim_audit_sink),
    db_session: Session = Depends(get_session),
) -> JSONResponse:
    """Add or remove role-group members (RFC 7644 §3.5.2).

    Handles member add/remove operations from Okta and Azure AD.
    """
    dal = ScimDAL(db_session)

    role = _resolve_group_role(group_id, dal, context)
    if not role:
        return scim_error_for(ScimErrorKind.NOT_FOUND, "Group not found")

    try:
        actions = parse_group_patch(patch_request.Operations)
    except PatchParseError as e:
        return scim_error_for(ScimErrorKind.INVALID_PATH, e.detail)

    target = RoleGroupTarget(
        scope_id=context.scope_id, tenant_id=context.tenant_id, role=role
    )
    result = apply_member_actions(dal, target, actions)
    if not result.ok:
        return _reconcile_error_response(result)

    emit_audit_event(
        audit_sink,
        AuditEvent(
            scope=AuditScope.SCOPE,
            action=AuditAction.SCIM_GROUP_UPDATE,
            actor_id=context.audit_user_id,
            target_type=AuditTargetType.ROLE_GROUP,
            target_id=role_group_id(context.scope_id, role),
            scope_id=context.scope_id,
            metadata={
                "role": role.value,
                "operations": [{"op": a.op, "userId": a.user_id} for a in actions],
            },
        ),
    )
    scope_slug = _scope_slug(dal, context.scope_id)
    return scim_response(_build_group_resource(dal, context, role, scope_slug))


@scim_router.delete("/Groups/{group_id}", response_model=None)
def delete_group(
    group_id: str,  # noqa: ARG001
    context: ScimAuthContext = Depends(require_scim_context),  # noqa: ARG001
) -> JSONResponse:
    """Role-groups exist as long as the role does; they cannot be deleted."""
    return scim_error_for(
        ScimErrorKind.METHOD_NOT_ALLOWED, "Role-based groups cannot be deleted"
    )
