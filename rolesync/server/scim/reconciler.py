"""Role-group membership reconciliation.

A role-group is "everyone in the scope holding role R". Provisioning a group
therefore means rewriting member roles:

  - adding a user to R sets their single scope role to R, creating the scope
    membership if the user is an active member of the tenant;
  - removing a user from R demotes them to the default role if, and only if,
    they still hold R when the transaction reads their row.

Invariants, checked per action inside the transaction:

  - OWNER is never assigned, demoted or overwritten. Touching a row whose
    current role is OWNER aborts the whole request.
  - Users without an active tenant identity are never given a membership.
  - All writes of a request commit together or not at all.

Domain failures come back as a ``ReconcileResult`` with an ``error`` kind;
only unexpected failures (store errors) raise, after rolling back.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rolesync.configs.constants import DEFAULT_SCOPE_ROLE
from rolesync.configs.constants import ScopeRole
from rolesync.db.models import ScopeMember
from rolesync.server.metrics import SCIM_RECONCILE_TOTAL
from rolesync.server.scim.patch import GroupMemberAction
from rolesync.utils.logger import setup_logger

logger = setup_logger()


class MembershipStore(Protocol):
    """The slice of the directory store the reconciler needs.

    Implemented by ``rolesync.db.scim.ScimDAL``.
    """

    def get_scope_member(
        self, scope_id: str, user_id: str, *, for_update: bool = False
    ) -> ScopeMember | None: ...

    def list_role_members(
        self, scope_id: str, role: ScopeRole
    ) -> list[ScopeMember]: ...

    def is_active_tenant_member(self, tenant_id: str, user_id: str) -> bool: ...

    def set_member_role(self, member: ScopeMember, role: ScopeRole) -> None: ...

    def add_scope_member(
        self, scope_id: str, tenant_id: str, user_id: str, role: ScopeRole
    ) -> ScopeMember: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class ReconcileError(str, Enum):
    OWNER_PROTECTED = "owner_protected"
    NO_SUCH_MEMBER = "no_such_member"


@dataclass(frozen=True)
class RoleGroupTarget:
    scope_id: str
    tenant_id: str
    role: ScopeRole


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation.

    ``added`` / ``removed`` list the users whose role actually changed.
    On failure nothing was written and ``user_id`` names the offending user,
    when there is one.
    """

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    error: ReconcileError | None = None
    user_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def replace_role_members(
    store: MembershipStore,
    target: RoleGroupTarget,
    requested_user_ids: Iterable[str],
) -> ReconcileResult:
    """Make the group's membership exactly ``requested_user_ids`` (PUT).

    Computes ``requested - current`` to add and ``current - requested`` to
    remove against the stored membership, then applies both in one
    transaction. A request equal to the current membership writes nothing.
    """
    if target.role == ScopeRole.OWNER:
        return _refuse_owner_group("replace")

    requested = list(dict.fromkeys(requested_user_ids))
    requested_set = set(requested)
    current = [m.user_id for m in store.list_role_members(target.scope_id, target.role)]
    current_set = set(current)

    actions = [
        GroupMemberAction(op="add", user_id=user_id)
        for user_id in requested
        if user_id not in current_set
    ]
    actions.extend(
        GroupMemberAction(op="remove", user_id=user_id)
        for user_id in current
        if user_id not in requested_set
    )

    return _run_in_transaction(store, target, actions, mode="replace")


def apply_member_actions(
    store: MembershipStore,
    target: RoleGroupTarget,
    actions: list[GroupMemberAction],
) -> ReconcileResult:
    """Apply parsed PATCH actions in submission order (PATCH)."""
    if target.role == ScopeRole.OWNER:
        return _refuse_owner_group("patch")

    return _run_in_transaction(store, target, actions, mode="patch")


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


def _refuse_owner_group(mode: str) -> ReconcileResult:
    SCIM_RECONCILE_TOTAL.labels(
        mode=mode, outcome=ReconcileError.OWNER_PROTECTED.value
    ).inc()
    return ReconcileResult(error=ReconcileError.OWNER_PROTECTED)


def _run_in_transaction(
    store: MembershipStore,
    target: RoleGroupTarget,
    actions: list[GroupMemberAction],
    mode: str,
) -> ReconcileResult:
    added: list[str] = []
    removed: list[str] = []

    try:
        for action in actions:
            if action.op == "add":
                error, changed = _apply_add(store, target, action.user_id)
                if changed:
                    added.append(action.user_id)
            else:
                error, changed = _apply_remove(store, target, action.user_id)
                if changed:
                    removed.append(action.user_id)

            if error is not None:
                store.rollback()
                logger.info(
                    "SCIM %s of %s group in scope %s aborted: %s (user %s)",
                    mode,
                    target.role.value,
                    target.scope_id,
                    error.value,
                    action.user_id,
                )
                SCIM_RECONCILE_TOTAL.labels(mode=mode, outcome=error.value).inc()
                return ReconcileResult(error=error, user_id=action.user_id)

        store.commit()
    except Exception:
        store.rollback()
        SCIM_RECONCILE_TOTAL.labels(mode=mode, outcome="exception").inc()
        raise

    SCIM_RECONCILE_TOTAL.labels(mode=mode, outcome="ok").inc()
    return ReconcileResult(added=tuple(added), removed=tuple(removed))


def _apply_add(
    store: MembershipStore, target: RoleGroupTarget, user_id: str
) -> tuple[ReconcileError | None, bool]:
    member = store.get_scope_member(target.scope_id, user_id, for_update=True)

    if member is not None:
        # Checked before the write: a generic role write would otherwise
        # silently demote an owner.
        if member.role == ScopeRole.OWNER:
            return ReconcileError.OWNER_PROTECTED, False
        if member.role == target.role:
            return None, False
        store.set_member_role(member, target.role)
        return None, True

    if not store.is_active_tenant_member(target.tenant_id, user_id):
        return ReconcileError.NO_SUCH_MEMBER, False

    store.add_scope_member(target.scope_id, target.tenant_id, user_id, target.role)
    return None, True


def _apply_remove(
    store: MembershipStore, target: RoleGroupTarget, user_id: str
) -> tuple[ReconcileError | None, bool]:
    # Re-read under lock; the role may have changed since the request arrived.
    member = store.get_scope_member(target.scope_id, user_id, for_update=True)

    if member is None:
        # Not in the scope at all, so not in the role either.
        return None, False
    if member.role == ScopeRole.OWNER:
        return ReconcileError.OWNER_PROTECTED, False
    if member.role != target.role:
        return None, False
    if target.role == DEFAULT_SCOPE_ROLE:
        # Demoting to the role it already holds changes nothing.
        return None, False

    store.set_member_role(member, DEFAULT_SCOPE_ROLE)
    return None, True
