"""Shared fixtures for SCIM endpoint unit tests."""

from __future__ import annotations

import json
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock
from unittest.mock import patch
from uuid import uuid4

import pytest
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from rolesync.configs.constants import ScimResourceType
from rolesync.configs.constants import ScopeRole
from rolesync.db.models import ScimExternalMapping
from rolesync.db.models import Scope
from rolesync.db.models import ScopeMember
from rolesync.db.models import User
from rolesync.server.scim.audit import LoggingAuditSink
from rolesync.server.scim.auth import ScimAuthContext
from rolesync.server.scim.responses import SCIM_CONTENT_TYPE

SCOPE_ID = "scope-1"
TENANT_ID = "tenant-1"
AUDIT_USER_ID = "audit-user"


@pytest.fixture
def mock_db_session() -> MagicMock:
    """A MagicMock standing in for a SQLAlchemy Session."""
    return MagicMock(spec=Session)


@pytest.fixture
def scim_context() -> ScimAuthContext:
    """The authenticated context a valid SCIM token resolves to."""
    return ScimAuthContext(
        scope_id=SCOPE_ID, tenant_id=TENANT_ID, audit_user_id=AUDIT_USER_ID
    )


@pytest.fixture
def audit_sink() -> MagicMock:
    return MagicMock(spec=LoggingAuditSink)


@pytest.fixture
def mock_dal() -> Generator[MagicMock, None, None]:
    """Patch ScimDAL construction in api module and yield the mock instance."""
    with patch("rolesync.server.scim.api.ScimDAL") as cls:
        dal = cls.return_value
        dal.get_scope.return_value = make_db_scope()
        dal.get_scope_member.return_value = None
        dal.get_external_mapping.return_value = None
        dal.get_external_ids.return_value = {}
        dal.list_scope_members.return_value = ([], 0)
        dal.list_role_members.return_value = []
        dal.is_active_tenant_member.return_value = True
        yield dal


def make_db_user(**kwargs: Any) -> MagicMock:
    """Build a mock User ORM object with configurable attributes."""
    user = MagicMock(spec=User)
    user.id = kwargs.get("id", str(uuid4()))
    user.email = kwargs.get("email", "test@example.com")
    user.name = kwargs.get("name", "Test User")
    return user


def make_scope_member(**kwargs: Any) -> MagicMock:
    """Build a mock ScopeMember with its joined User."""
    user = kwargs.get("user") or make_db_user(
        id=kwargs.get("user_id", str(uuid4())),
        email=kwargs.get("email", "test@example.com"),
        name=kwargs.get("name", "Test User"),
    )
    member = MagicMock(spec=ScopeMember)
    member.id = kwargs.get("id", str(uuid4()))
    member.scope_id = kwargs.get("scope_id", SCOPE_ID)
    member.tenant_id = kwargs.get("tenant_id", TENANT_ID)
    member.user_id = user.id
    member.user = user
    member.role = kwargs.get("role", ScopeRole.MEMBER)
    member.deactivated_at = kwargs.get("deactivated_at")
    return member


def make_db_scope(**kwargs: Any) -> MagicMock:
    scope = MagicMock(spec=Scope)
    scope.id = kwargs.get("id", SCOPE_ID)
    scope.tenant_id = kwargs.get("tenant_id", TENANT_ID)
    scope.name = kwargs.get("name", "Platform")
    scope.slug = kwargs.get("slug")
    return scope


def make_external_mapping(**kwargs: Any) -> MagicMock:
    mapping = MagicMock(spec=ScimExternalMapping)
    mapping.tenant_id = kwargs.get("tenant_id", TENANT_ID)
    mapping.scope_id = kwargs.get("scope_id", SCOPE_ID)
    mapping.external_id = kwargs.get("external_id", "ext-1")
    mapping.resource_type = kwargs.get("resource_type", ScimResourceType.USER)
    mapping.internal_id = kwargs["internal_id"]
    return mapping


def parse_body(result: object) -> dict[str, Any]:
    """Decode the JSON body of a SCIM response."""
    assert isinstance(result, JSONResponse)
    assert result.media_type == SCIM_CONTENT_TYPE
    return json.loads(bytes(result.body))


def assert_scim_error(
    result: object, expected_status: int, scim_type: str | None = None
) -> dict[str, Any]:
    """Assert *result* is a SCIM error envelope with the given status code."""
    assert isinstance(result, JSONResponse)
    assert result.status_code == expected_status
    body = parse_body(result)
    assert body["schemas"] == ["urn:ietf:params:scim:api:messages:2.0:Error"]
    assert body["status"] == str(expected_status)
    if scim_type is not None:
        assert body["scimType"] == scim_type
    return body
