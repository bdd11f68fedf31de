"""SCIM Data Access Layer.

All database operations for SCIM provisioning: scope membership reads and
writes, the tenant identity check, user listing, and external id mappings.
Extends the base DAL (see ``rolesync.db.dal``).

Every query is bound to a tenant and/or scope id taken from the
authenticated context; no method reads across tenants.

Usage from FastAPI::

    @router.get("/Users")
    def list_users(db_session: Session = Depends(get_session)) -> ...:
        dal = ScimDAL(db_session)
        members, total = dal.list_scope_members(scope_id, clause, 1, 100)
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable

from sqlalchemy import ColumnElement
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy import true

from rolesync.configs.constants import ScimResourceType
from rolesync.configs.constants import ScopeRole
from rolesync.db.dal import DAL
from rolesync.db.models import ScimExternalMapping
from rolesync.db.models import Scope
from rolesync.db.models import ScopeMember
from rolesync.db.models import TenantMember
from rolesync.db.models import User
from rolesync.utils.logger import setup_logger

logger = setup_logger()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ScimDAL(DAL):
    """Data Access Layer for SCIM provisioning operations.

    Methods mutate but do NOT commit. Call ``dal.commit()`` explicitly
    when you want to persist changes. This lets callers batch multiple
    operations into one transaction.
    """

    # ------------------------------------------------------------------
    # Scope operations
    # ------------------------------------------------------------------

    def get_scope(self, scope_id: str) -> Scope | None:
        return self._session.get(Scope, scope_id)

    # ------------------------------------------------------------------
    # Membership reads
    # ------------------------------------------------------------------

    def get_scope_member(
        self,
        scope_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> ScopeMember | None:
        """Fetch the membership row of ``user_id`` in ``scope_id``.

        With ``for_update`` the row is locked until the transaction ends and
        re-read from the database even if it is already in the session, so
        a role changed by a concurrent writer is observed.
        """
        stmt = select(ScopeMember).where(
            ScopeMember.scope_id == scope_id,
            ScopeMember.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.scalar(stmt)

    def list_role_members(self, scope_id: str, role: ScopeRole) -> list[ScopeMember]:
        """Active members currently holding ``role`` in the scope."""
        return list(
            self._session.scalars(
                select(ScopeMember)
                .join(User, User.id == ScopeMember.user_id)
                .where(
                    ScopeMember.scope_id == scope_id,
                    ScopeMember.role == role,
                    ScopeMember.deactivated_at.is_(None),
                    User.email.is_not(None),
                )
                .order_by(ScopeMember.created_at, ScopeMember.id)
            ).all()
        )

    def is_active_tenant_member(self, tenant_id: str, user_id: str) -> bool:
        """Whether ``user_id`` has a directory identity in the tenant that is
        not deactivated."""
        member_id = self._session.scalar(
            select(TenantMember.id).where(
                TenantMember.tenant_id == tenant_id,
                TenantMember.user_id == user_id,
                TenantMember.deactivated_at.is_(None),
            )
        )
        return member_id is not None

    def list_scope_members(
        self,
        scope_id: str,
        clause: ColumnElement[bool] | None = None,
        start_index: int = 1,
        count: int = 100,
        *,
        user_id: str | None = None,
    ) -> tuple[list[ScopeMember], int]:
        """Query scope members with an optional filter predicate.

        Args:
            clause: Predicate over ``User`` / ``ScopeMember`` columns, as
                built by ``filter_to_clause``.
            start_index: 1-based start index (SCIM convention).
            count: Maximum number of results to return.
            user_id: Restrict to one user (resolved ``externalId`` filters).

        Returns:
            A tuple of (members, total_count).
        """
        query = (
            select(ScopeMember)
            .join(User, User.id == ScopeMember.user_id)
            .where(ScopeMember.scope_id == scope_id, User.email.is_not(None))
            .where(clause if clause is not None else true())
        )
        if user_id is not None:
            query = query.where(ScopeMember.user_id == user_id)

        # SCIM uses 1-based indexing (RFC 7644 §3.4.2)
        total = (
            self._session.scalar(select(func.count()).select_from(query.subquery()))
            or 0
        )

        offset = max(start_index - 1, 0)
        members = list(
            self._session.scalars(
                query.order_by(ScopeMember.created_at, ScopeMember.id)
                .offset(offset)
                .limit(count)
            ).all()
        )
        return members, total

    # ------------------------------------------------------------------
    # Membership writes
    # ------------------------------------------------------------------

    def set_member_role(self, member: ScopeMember, role: ScopeRole) -> None:
        member.role = role
        member.scim_managed = True
        member.last_scim_synced_at = _utcnow()
        self._session.flush()

    def add_scope_member(
        self,
        scope_id: str,
        tenant_id: str,
        user_id: str,
        role: ScopeRole,
    ) -> ScopeMember:
        member = ScopeMember(
            scope_id=scope_id,
            tenant_id=tenant_id,
            user_id=user_id,
            role=role,
            scim_managed=True,
            last_scim_synced_at=_utcnow(),
        )
        self._session.add(member)
        self._session.flush()
        return member

    def set_member_active(self, member: ScopeMember, active: bool) -> None:
        """Clear or set the deactivation timestamp. Keeps the original
        timestamp when an already deactivated member is deactivated again."""
        if active:
            member.deactivated_at = None
        elif member.deactivated_at is None:
            member.deactivated_at = _utcnow()
        member.scim_managed = True
        member.last_scim_synced_at = _utcnow()

    def delete_scope_member(self, member: ScopeMember) -> None:
        self._session.delete(member)

    def update_user_name(self, user: User, name: str) -> None:
        user.name = name

    # ------------------------------------------------------------------
    # External id mappings (read only)
    # ------------------------------------------------------------------

    def get_external_mapping(
        self,
        tenant_id: str,
        external_id: str,
        resource_type: ScimResourceType,
    ) -> ScimExternalMapping | None:
        """Look up a mapping by the IdP's identifier within the tenant."""
        return self._session.scalar(
            select(ScimExternalMapping).where(
                ScimExternalMapping.tenant_id == tenant_id,
                ScimExternalMapping.external_id == external_id,
                ScimExternalMapping.resource_type == resource_type,
            )
        )

    def get_external_ids(
        self,
        tenant_id: str,
        internal_ids: Iterable[str],
        resource_type: ScimResourceType,
    ) -> dict[str, str]:
        """Batch-fetch external ids keyed by internal id."""
        ids = list(internal_ids)
        if not ids:
            return {}
        mappings = self._session.scalars(
            select(ScimExternalMapping).where(
                ScimExternalMapping.tenant_id == tenant_id,
                ScimExternalMapping.resource_type == resource_type,
                ScimExternalMapping.internal_id.in_(ids),
            )
        ).all()
        return {m.internal_id: m.external_id for m in mappings}
