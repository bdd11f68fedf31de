import pytest

from rolesync.server.scim.models import ScimPatchOperation
from rolesync.server.scim.models import ScimPatchOperationType
from rolesync.server.scim.patch import GroupMemberAction
from rolesync.server.scim.patch import parse_group_patch
from rolesync.server.scim.patch import parse_user_patch
from rolesync.server.scim.patch import PatchParseError
from rolesync.server.scim.patch import UserPatchResult


def _op(op: str, path: str | None = None, value: object = None) -> ScimPatchOperation:
    return ScimPatchOperation(op=op, path=path, value=value)  # type: ignore[arg-type]


class TestParseUserPatch:
    """Tests for PATCH on User resources."""

    def test_deactivate(self) -> None:
        result = parse_user_patch([_op("replace", "active", False)])
        assert result == UserPatchResult(active=False)

    def test_add_counts_as_replace(self) -> None:
        result = parse_user_patch([_op("add", "active", True)])
        assert result.active is True

    def test_replace_name(self) -> None:
        result = parse_user_patch([_op("replace", "name.formatted", "Jane Doe")])
        assert result == UserPatchResult(name="Jane Doe")

    def test_pathless_object_value(self) -> None:
        result = parse_user_patch(
            [_op("replace", None, {"active": False, "name": {"formatted": "J"}})]
        )
        assert result == UserPatchResult(active=False, name="J")

    def test_later_operations_win(self) -> None:
        result = parse_user_patch(
            [_op("replace", "active", False), _op("replace", "active", True)]
        )
        assert result.active is True

    def test_capitalized_op_from_entra(self) -> None:
        result = parse_user_patch([_op("Replace", "active", False)])
        assert result.active is False

    def test_remove_rejected(self) -> None:
        with pytest.raises(PatchParseError, match="Unsupported op 'remove'"):
            parse_user_patch([_op("remove", "active")])

    def test_unsupported_path(self) -> None:
        with pytest.raises(PatchParseError, match="Unsupported PATCH path 'emails'"):
            parse_user_patch([_op("replace", "emails", [])])

    def test_active_must_be_bool(self) -> None:
        with pytest.raises(PatchParseError, match="active must be a boolean"):
            parse_user_patch([_op("replace", "active", "false")])

    def test_pathless_active_must_be_bool(self) -> None:
        with pytest.raises(PatchParseError, match="active must be a boolean"):
            parse_user_patch([_op("replace", None, {"active": "no"})])

    def test_name_must_be_string(self) -> None:
        with pytest.raises(PatchParseError, match="name.formatted must be a string"):
            parse_user_patch([_op("replace", "name.formatted", 42)])

    def test_pathless_non_object_value(self) -> None:
        with pytest.raises(PatchParseError, match=r"Unsupported PATCH path '\(none\)'"):
            parse_user_patch([_op("replace", None, False)])


class TestParseGroupPatch:
    """Tests for PATCH on role-groups."""

    def test_add_members(self) -> None:
        result = parse_group_patch(
            [_op("add", "members", [{"value": "u1"}, {"value": "u2"}])]
        )
        assert result == [
            GroupMemberAction(op="add", user_id="u1"),
            GroupMemberAction(op="add", user_id="u2"),
        ]

    def test_remove_members_by_value_list(self) -> None:
        result = parse_group_patch([_op("remove", "members", [{"value": "u1"}])])
        assert result == [GroupMemberAction(op="remove", user_id="u1")]

    def test_remove_by_filter_path(self) -> None:
        result = parse_group_patch([_op("remove", 'members[value eq "u7"]')])
        assert result == [GroupMemberAction(op="remove", user_id="u7")]

    def test_order_is_preserved(self) -> None:
        result = parse_group_patch(
            [
                _op("remove", 'members[value eq "u2"]'),
                _op("add", "members", [{"value": "u1"}]),
                _op("remove", "members", [{"value": "u3"}]),
            ]
        )
        assert [(a.op, a.user_id) for a in result] == [
            ("remove", "u2"),
            ("add", "u1"),
            ("remove", "u3"),
        ]

    def test_display_is_ignored(self) -> None:
        result = parse_group_patch(
            [_op("add", "members", [{"value": "u1", "display": "a@b.co"}])]
        )
        assert result == [GroupMemberAction(op="add", user_id="u1")]

    def test_filter_path_with_value_rejected(self) -> None:
        with pytest.raises(PatchParseError, match="must not carry a value"):
            parse_group_patch(
                [_op("remove", 'members[value eq "u1"]', [{"value": "u2"}])]
            )

    def test_filter_path_with_empty_value_accepted(self) -> None:
        result = parse_group_patch([_op("remove", 'members[value eq "u1"]', [])])
        assert result == [GroupMemberAction(op="remove", user_id="u1")]

    def test_malformed_filter_path(self) -> None:
        with pytest.raises(PatchParseError, match="Invalid members filter syntax"):
            parse_group_patch([_op("remove", "members[display eq 'x']")])

    def test_add_with_filter_path_rejected(self) -> None:
        with pytest.raises(PatchParseError, match="Unsupported PATCH op 'add'"):
            parse_group_patch([_op("add", 'members[value eq "u1"]')])

    def test_replace_members_rejected(self) -> None:
        with pytest.raises(PatchParseError, match="Unsupported PATCH op 'replace'"):
            parse_group_patch([_op("replace", "members", [{"value": "u1"}])])

    def test_display_name_path_rejected(self) -> None:
        with pytest.raises(PatchParseError, match="path 'displayName'"):
            parse_group_patch([_op("replace", "displayName", "x")])

    def test_members_value_must_be_array(self) -> None:
        with pytest.raises(PatchParseError, match="members value must be an array"):
            parse_group_patch([_op("add", "members", {"value": "u1"})])

    def test_member_without_string_value(self) -> None:
        with pytest.raises(PatchParseError, match="string 'value' field"):
            parse_group_patch([_op("add", "members", [{"value": 5}])])

    def test_op_type_enum_is_normalized(self) -> None:
        operation = _op("ADD", "members", [{"value": "u1"}])
        assert operation.op == ScimPatchOperationType.ADD
