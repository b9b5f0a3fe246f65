"""Database engine and session management.

The web app, the CLI and arq workers open their own engine against the
same database. On SQLite every connection runs in WAL mode with a busy
timeout so a worker committing stats does not fail a concurrent request.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_PATH = Path.home() / ".discovery_agent" / "discovery.db"
ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"
SQLITE_BUSY_TIMEOUT_MS = 5000

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the database URL.

    An explicit path wins, then DATABASE_URL (a full SQLAlchemy URL or a
    bare SQLite file path), then the default file under the home directory.
    """
    if db_path is None:
        configured = os.environ.get("DATABASE_URL", "")
        if "://" in configured:
            return configured
        db_path = configured or DEFAULT_DB_PATH

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def create_db_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shared across threads and use WAL."""
    url = get_database_url(db_path)
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _configure_sqlite)
    return engine


def get_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(db_path, echo)
    return _engine


def get_session_factory(db_path: Path | str | None = None) -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(db_path), autoflush=False)
    return _SessionLocal


def reset_engine() -> None:
    """Dispose the process-wide engine so the next call reconnects."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_session(db_path: Path | str | None = None) -> Generator[Session, None, None]:
    """
    Open a session. Callers commit; anything uncommitted is discarded on exit.

    Usage:
        with get_session() as session:
            RunTracker(session).create(RunKind.DISCOVERY, config)
            session.commit()
    """
    session = get_session_factory(db_path)()
    try:
        yield session
    finally:
        session.close()


def init_db(db_path: Path | str | None = None) -> None:
    """Create all tables that do not exist yet. Deployments use run_migrations."""
    from discovery_agent.db.models import Base

    Base.metadata.create_all(bind=get_engine(db_path))


def run_migrations(db_path: Path | str | None = None, revision: str = "head") -> None:
    """Upgrade the schema with Alembic."""
    if not ALEMBIC_INI.exists():
        raise FileNotFoundError(f"Alembic config not found: {ALEMBIC_INI}")

    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", get_database_url(db_path))
    command.upgrade(config, revision)
