from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy import Engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker

from rolesync.configs.app_configs import POSTGRES_POOL_PRE_PING
from rolesync.configs.app_configs import POSTGRES_POOL_SIZE
from rolesync.configs.app_configs import SQLALCHEMY_DATABASE_URL
from rolesync.utils.logger import setup_logger

logger = setup_logger()

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_sqlalchemy_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs: dict = {"pool_pre_ping": POSTGRES_POOL_PRE_PING}
        if not SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
            kwargs["pool_size"] = POSTGRES_POOL_SIZE
        _engine = create_engine(SQLALCHEMY_DATABASE_URL, **kwargs)
        logger.info("Created SQLAlchemy engine for %s", _engine.url.render_as_string())
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_sqlalchemy_engine(), expire_on_commit=False
        )
    return _session_factory


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request scoped session."""
    with get_session_factory()() as session:
        yield session


@contextmanager
def get_session_context_manager() -> Generator[Session, None, None]:
    """Session for scripts and background work outside a request."""
    with get_session_factory()() as session:
        yield session
