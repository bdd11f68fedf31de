"""Fixtures for unit-testing DAL classes.

``scim_dal`` runs against a mocked session for write-path assertions;
``sqlite_dal`` runs against an in-memory SQLite database for queries.
"""

from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from rolesync.db.models import Base
from rolesync.db.scim import ScimDAL


def model_attrs(obj: object) -> dict[str, Any]:
    """Extract user-set attributes from a SQLAlchemy model instance.

    Filters out SQLAlchemy internal state (``_sa_instance_state``).
    """
    return {k: v for k, v in vars(obj).items() if not k.startswith("_")}


@pytest.fixture
def mock_db_session() -> MagicMock:
    """A MagicMock standing in for a SQLAlchemy Session."""
    return MagicMock(spec=Session)


@pytest.fixture
def scim_dal(mock_db_session: MagicMock) -> ScimDAL:
    """A ScimDAL backed by a mock session."""
    return ScimDAL(mock_db_session)


@pytest.fixture
def sqlite_session() -> Generator[Session, None, None]:
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield session
    engine.dispose()


@pytest.fixture
def sqlite_dal(sqlite_session: Session) -> ScimDAL:
    return ScimDAL(sqlite_session)
