"""Directory schema.

Users, tenants and scopes are owned by the surrounding account system. The
SCIM engine reads all of them, but only writes ``ScopeMember.role``, scope
membership existence and the deactivation timestamp.
"""

import datetime
from uuid import uuid4

from sqlalchemy import DateTime
from sqlalchemy import Enum
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Index
from sqlalchemy import String
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship

from rolesync.configs.constants import ScimResourceType
from rolesync.configs.constants import ScopeRole


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Scope(Base):
    """A tenant-bound role container (a team or org)."""

    __tablename__ = "scope"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Human readable identifier used in role-group display names
    slug: Mapped[str | None] = mapped_column(String, nullable=True)


class User(Base):
    __tablename__ = "user"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)


class TenantMember(Base):
    """Directory identity of a user inside a tenant."""

    __tablename__ = "tenant_member"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    deactivated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ScopeMember(Base):
    """Membership of a user in a scope. One row, one role, per (scope, user)."""

    __tablename__ = "scope_member"
    __table_args__ = (
        UniqueConstraint("scope_id", "user_id"),
        Index("ix_scope_member_scope_id_role", "scope_id", "role"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    scope_id: Mapped[str] = mapped_column(
        ForeignKey("scope.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[ScopeRole] = mapped_column(
        Enum(ScopeRole, native_enum=False), nullable=False
    )
    deactivated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scim_managed: Mapped[bool] = mapped_column(default=False)
    last_scim_synced_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship("User", lazy="joined")


class ScimExternalMapping(Base):
    """Binds an IdP supplied identifier to an internal resource id.

    For users ``internal_id`` is the user id; for groups it is the computed
    role-group id. Written by account provisioning flows, read here.
    """

    __tablename__ = "scim_external_mapping"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", "resource_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False
    )
    scope_id: Mapped[str] = mapped_column(
        ForeignKey("scope.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[ScimResourceType] = mapped_column(
        Enum(ScimResourceType, native_enum=False), nullable=False
    )
    internal_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
