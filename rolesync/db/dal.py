"""Base Data Access Layer (DAL) for database operations.

The DAL pattern groups related database operations into cohesive classes
with explicit session management. It supports two usage modes:

  1. **External session** (FastAPI endpoints): the caller provides a session
     whose lifecycle is managed by FastAPI's dependency injection.

  2. **Self-managed session** (scripts, maintenance jobs): the DAL opens its
     own session from the shared session factory.

Subclasses add domain-specific query methods while inheriting session
management. See ``rolesync.db.scim.ScimDAL`` for a concrete example.

Example (FastAPI)::

    @router.get("/Users")
    def list_users(db_session: Session = Depends(get_session)) -> ...:
        dal = ScimDAL(db_session)
        return dal.list_scope_members(...)

Example (script)::

    with ScimDAL.managed() as dal:
        dal.set_member_role(member, ScopeRole.ADMIN)
        dal.commit()
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.orm import Session

from rolesync.db.engine import get_session_context_manager

DALT = TypeVar("DALT", bound="DAL")


class DAL:
    """Base Data Access Layer.

    Holds a SQLAlchemy session and provides transaction control helpers.
    Subclasses add domain-specific query methods.
    """

    def __init__(self, db_session: Session) -> None:
        self._session = db_session

    @property
    def session(self) -> Session:
        """Direct access to the underlying session for advanced use cases."""
        return self._session

    def commit(self) -> None:
        self._session.commit()

    def flush(self) -> None:
        self._session.flush()

    def rollback(self) -> None:
        self._session.rollback()

    @classmethod
    @contextmanager
    def managed(cls: type[DALT]) -> Generator[DALT, None, None]:
        """Create a DAL with a self-managed session.

        The session is automatically closed when the context manager exits.
        The caller must explicitly call ``commit()`` to persist changes.
        """
        with get_session_context_manager() as session:
            yield cls(session)
