import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from rolesync.configs.constants import ScimResourceType
from rolesync.configs.constants import ScopeRole
from rolesync.db.models import ScimExternalMapping
from rolesync.db.models import Scope
from rolesync.db.models import ScopeMember
from rolesync.db.models import Tenant
from rolesync.db.models import TenantMember
from rolesync.db.models import User
from rolesync.db.scim import ScimDAL
from rolesync.server.scim.filtering import filter_to_clause
from rolesync.server.scim.filtering import parse_scim_filter
from tests.unit.rolesync.db.conftest import model_attrs

_T0 = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


class TestScimDALWrites:
    """Write paths: mutate and flush, never commit."""

    def test_set_member_role_marks_scim_managed(
        self, scim_dal: ScimDAL, mock_db_session: MagicMock
    ) -> None:
        member = ScopeMember(
            scope_id="s1", tenant_id="t1", user_id="u1", role=ScopeRole.MEMBER
        )

        scim_dal.set_member_role(member, ScopeRole.ADMIN)

        assert member.role == ScopeRole.ADMIN
        assert member.scim_managed is True
        assert member.last_scim_synced_at is not None
        mock_db_session.flush.assert_called_once()
        mock_db_session.commit.assert_not_called()

    def test_add_scope_member_adds_to_session(
        self, scim_dal: ScimDAL, mock_db_session: MagicMock
    ) -> None:
        scim_dal.add_scope_member("s1", "t1", "u1", ScopeRole.VIEWER)

        mock_db_session.add.assert_called_once()
        mock_db_session.flush.assert_called_once()
        added = mock_db_session.add.call_args[0][0]
        attrs = model_attrs(added)
        synced_at = attrs.pop("last_scim_synced_at")
        assert isinstance(synced_at, datetime.datetime)
        assert attrs == {
            "scope_id": "s1",
            "tenant_id": "t1",
            "user_id": "u1",
            "role": ScopeRole.VIEWER,
            "scim_managed": True,
        }

    def test_deactivate_sets_timestamp(self, scim_dal: ScimDAL) -> None:
        member = ScopeMember(role=ScopeRole.MEMBER, deactivated_at=None)

        scim_dal.set_member_active(member, False)

        assert member.deactivated_at is not None

    def test_deactivate_again_keeps_original_timestamp(
        self, scim_dal: ScimDAL
    ) -> None:
        member = ScopeMember(role=ScopeRole.MEMBER, deactivated_at=_T0)

        scim_dal.set_member_active(member, False)

        assert member.deactivated_at == _T0

    def test_reactivate_clears_timestamp(self, scim_dal: ScimDAL) -> None:
        member = ScopeMember(role=ScopeRole.MEMBER, deactivated_at=_T0)

        scim_dal.set_member_active(member, True)

        assert member.deactivated_at is None
        assert member.scim_managed is True

    def test_delete_scope_member(
        self, scim_dal: ScimDAL, mock_db_session: MagicMock
    ) -> None:
        member = ScopeMember(role=ScopeRole.MEMBER)

        scim_dal.delete_scope_member(member)

        mock_db_session.delete.assert_called_once_with(member)
        mock_db_session.commit.assert_not_called()

    def test_update_user_name(self, scim_dal: ScimDAL) -> None:
        user = User(email="a@example.com", name="Old")
        expected = model_attrs(user) | {"name": "New"}

        scim_dal.update_user_name(user, "New")

        assert model_attrs(user) == expected

    def test_locked_read_uses_for_update(
        self, scim_dal: ScimDAL, mock_db_session: MagicMock
    ) -> None:
        mock_db_session.scalar.return_value = None

        scim_dal.get_scope_member("s1", "u1", for_update=True)

        stmt = mock_db_session.scalar.call_args.args[0]
        assert stmt._for_update_arg is not None
        assert stmt.get_execution_options()["populate_existing"] is True

    def test_plain_read_does_not_lock(
        self, scim_dal: ScimDAL, mock_db_session: MagicMock
    ) -> None:
        mock_db_session.scalar.return_value = None

        scim_dal.get_scope_member("s1", "u1")

        stmt = mock_db_session.scalar.call_args.args[0]
        assert stmt._for_update_arg is None


@pytest.fixture
def directory(sqlite_session: Session) -> Session:
    """Two tenants; scope s1 in t1 holds an owner, admins and members."""
    sqlite_session.add_all(
        [
            Tenant(id="t1", name="Acme"),
            Tenant(id="t2", name="Other"),
            Scope(id="s1", tenant_id="t1", name="Platform", slug="platform"),
            Scope(id="s2", tenant_id="t2", name="Elsewhere"),
            User(id="owner", email="owner@acme.com", name="Owner"),
            User(id="ann", email="Ann@Acme.com", name="Ann"),
            User(id="bob", email="bob@acme.com", name="Bob"),
            User(id="cat", email="cat@acme.com", name=None),
            User(id="ghost", email=None, name="No Email"),
            User(id="drew", email="drew@other.com", name="Drew"),
            TenantMember(tenant_id="t1", user_id="owner"),
            TenantMember(tenant_id="t1", user_id="ann"),
            TenantMember(tenant_id="t1", user_id="bob"),
            TenantMember(tenant_id="t1", user_id="cat", deactivated_at=_T0),
            TenantMember(tenant_id="t2", user_id="drew"),
        ]
    )
    rows = [
        ("owner", ScopeRole.OWNER, None),
        ("ann", ScopeRole.ADMIN, None),
        ("bob", ScopeRole.ADMIN, _T0),
        ("cat", ScopeRole.MEMBER, None),
        ("ghost", ScopeRole.ADMIN, None),
    ]
    for i, (user_id, role, deactivated_at) in enumerate(rows):
        sqlite_session.add(
            ScopeMember(
                id=f"m-{i}",
                scope_id="s1",
                tenant_id="t1",
                user_id=user_id,
                role=role,
                deactivated_at=deactivated_at,
                created_at=_T0 + datetime.timedelta(minutes=i),
            )
        )
    sqlite_session.add(
        ScopeMember(
            scope_id="s2", tenant_id="t2", user_id="drew", role=ScopeRole.ADMIN
        )
    )
    sqlite_session.add_all(
        [
            ScimExternalMapping(
                tenant_id="t1",
                scope_id="s1",
                external_id="okta-ann",
                resource_type=ScimResourceType.USER,
                internal_id="ann",
            ),
            ScimExternalMapping(
                tenant_id="t2",
                scope_id="s2",
                external_id="okta-ann",
                resource_type=ScimResourceType.USER,
                internal_id="drew",
            ),
        ]
    )
    sqlite_session.commit()
    return sqlite_session


@pytest.mark.usefixtures("directory")
class TestScimDALQueries:
    """Read paths against a real schema."""

    def test_get_scope(self, sqlite_dal: ScimDAL) -> None:
        scope = sqlite_dal.get_scope("s1")
        assert scope is not None
        assert scope.slug == "platform"
        assert sqlite_dal.get_scope("missing") is None

    def test_get_scope_member_is_scope_bound(self, sqlite_dal: ScimDAL) -> None:
        member = sqlite_dal.get_scope_member("s1", "ann", for_update=True)
        assert member is not None
        assert member.role == ScopeRole.ADMIN
        assert member.user.email == "Ann@Acme.com"
        assert sqlite_dal.get_scope_member("s1", "drew") is None

    def test_list_role_members_skips_inactive_and_emailless(
        self, sqlite_dal: ScimDAL
    ) -> None:
        admins = sqlite_dal.list_role_members("s1", ScopeRole.ADMIN)
        assert [m.user_id for m in admins] == ["ann"]

    def test_is_active_tenant_member(self, sqlite_dal: ScimDAL) -> None:
        assert sqlite_dal.is_active_tenant_member("t1", "ann")
        assert not sqlite_dal.is_active_tenant_member("t1", "cat")
        assert not sqlite_dal.is_active_tenant_member("t1", "drew")
        assert not sqlite_dal.is_active_tenant_member("t1", "nobody")

    def test_list_scope_members_all(self, sqlite_dal: ScimDAL) -> None:
        members, total = sqlite_dal.list_scope_members("s1")
        assert total == 4
        assert [m.user_id for m in members] == ["owner", "ann", "bob", "cat"]

    def test_list_scope_members_paginates(self, sqlite_dal: ScimDAL) -> None:
        members, total = sqlite_dal.list_scope_members("s1", None, 2, 2)
        assert total == 4
        assert [m.user_id for m in members] == ["ann", "bob"]

    def test_user_name_filter_is_case_insensitive(self, sqlite_dal: ScimDAL) -> None:
        clause = filter_to_clause(parse_scim_filter('userName eq "ANN@acme.com"'))
        members, total = sqlite_dal.list_scope_members("s1", clause)
        assert total == 1
        assert members[0].user_id == "ann"

    def test_active_filter(self, sqlite_dal: ScimDAL) -> None:
        clause = filter_to_clause(parse_scim_filter("active eq false"))
        members, _ = sqlite_dal.list_scope_members("s1", clause)
        assert [m.user_id for m in members] == ["bob"]

    def test_and_filter(self, sqlite_dal: ScimDAL) -> None:
        clause = filter_to_clause(
            parse_scim_filter('userName sw "b" and active eq true')
        )
        _, total = sqlite_dal.list_scope_members("s1", clause)
        assert total == 0

    def test_or_filter(self, sqlite_dal: ScimDAL) -> None:
        clause = filter_to_clause(
            parse_scim_filter('userName co "ann" or userName co "cat"')
        )
        members, _ = sqlite_dal.list_scope_members("s1", clause)
        assert [m.user_id for m in members] == ["ann", "cat"]

    def test_restrict_to_user(self, sqlite_dal: ScimDAL) -> None:
        clause = filter_to_clause(parse_scim_filter('externalId eq "okta-ann"'))
        members, total = sqlite_dal.list_scope_members("s1", clause, user_id="ann")
        assert total == 1
        assert members[0].user_id == "ann"

    def test_external_mapping_is_tenant_bound(self, sqlite_dal: ScimDAL) -> None:
        mapping = sqlite_dal.get_external_mapping(
            "t1", "okta-ann", ScimResourceType.USER
        )
        assert mapping is not None
        assert mapping.internal_id == "ann"
        assert (
            sqlite_dal.get_external_mapping("t1", "okta-ann", ScimResourceType.GROUP)
            is None
        )

    def test_get_external_ids(self, sqlite_dal: ScimDAL) -> None:
        assert sqlite_dal.get_external_ids(
            "t1", ["ann", "bob"], ScimResourceType.USER
        ) == {"ann": "okta-ann"}
        assert sqlite_dal.get_external_ids("t1", [], ScimResourceType.USER) == {}

    def test_add_and_promote_round_trip(
        self, sqlite_dal: ScimDAL, sqlite_session: Session
    ) -> None:
        sqlite_session.add(User(id="eve", email="eve@acme.com"))
        sqlite_session.add(TenantMember(tenant_id="t1", user_id="eve"))
        sqlite_session.flush()

        sqlite_dal.add_scope_member("s1", "t1", "eve", ScopeRole.VIEWER)
        sqlite_dal.commit()

        member = sqlite_dal.get_scope_member("s1", "eve")
        assert member is not None
        assert member.role == ScopeRole.VIEWER
        assert member.scim_managed is True
