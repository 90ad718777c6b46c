"""
Database session management for the Partner MDM service

Sessions reach FastAPI endpoints through ``get_db`` and background jobs
(the scheduled SAP reverse sync) through ``session_scope``. Services own
their commits: the approval workflow commits once per SAP segment
transition, so sessions never expire loaded rows on commit.
"""

import os
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Mapping, Optional

from sqlalchemy import create_engine, text, Engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import DatabaseConfig
from database.models import Base

logger = logging.getLogger(__name__)


# ============================================
# SETTINGS
# ============================================

@dataclass
class DatabaseSettings:
    """Connection settings of the partner database."""
    host: str = "localhost"
    port: int = 5432
    database: str = "partner_mdm"
    user: str = "mdm_user"
    password: str = "mdm_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: Optional[DatabaseConfig] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> 'DatabaseSettings':
        """
        Build settings from the ``database`` config section.

        ``DATABASE_URL`` replaces the whole connection; ``DB_HOST``,
        ``DB_PORT``, ``DB_NAME``, ``DB_USER`` and ``DB_PASSWORD`` override
        single values.

        Args:
            config: Parsed ``database`` section (defaults when omitted)
            environ: Environment mapping (``os.environ`` when omitted)
        """
        config = config or DatabaseConfig()
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("DB_HOST") or config.host,
            port=int(env.get("DB_PORT") or config.port),
            database=env.get("DB_NAME") or config.name,
            user=env.get("DB_USER") or config.user,
            password=env.get("DB_PASSWORD") or config.password,
            pool_size=int(env.get("DB_POOL_SIZE") or 5),
            max_overflow=int(env.get("DB_MAX_OVERFLOW") or 10),
            echo=(env.get("DB_ECHO") or "").lower() == "true",
            url=env.get("DATABASE_URL") or None,
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    def safe_url(self) -> str:
        """Connection URL with the password masked, for logs."""
        return make_url(self.get_url()).render_as_string(hide_password=True)

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_engine; SQLite gets no pool sizing."""
        options: Dict[str, Any] = {"echo": self.echo}
        if make_url(self.get_url()).get_backend_name() == "sqlite":
            return options
        options.update(
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            pool_recycle=self.pool_recycle,
            pool_pre_ping=True,
        )
        return options


connect_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and hands out sessions.

    Usage:
        provider = DatabaseSessionProvider(DatabaseSettings.from_config(config.database))
        provider.init()

        with provider.session_scope() as session:
            SapSyncService(session, config.sap).sync_partners()
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Connection settings (environment defaults when omitted)
            engine: Pre-built engine, used as is (tests)
        """
        self.settings = settings or DatabaseSettings.from_config()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self) -> None:
        """Connect (with retries) and build the session factory. Idempotent."""
        if self.initialized:
            return
        if self._engine is None:
            self._engine = self._connect()
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info(f"Database ready at {self.settings.safe_url()}")

    @connect_retry
    def _connect(self) -> Engine:
        logger.info(f"Connecting to {self.settings.safe_url()}")
        engine = create_engine(self.settings.get_url(), **self.settings.engine_options())
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self.init()
        return self._session_factory

    def get_session(self) -> Generator[Session, None, None]:
        """Request-scoped session; never committed here."""
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session committed on success and rolled back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create the partner, change request and audit tables if missing."""
        self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Partner MDM tables ensured")

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


# ============================================
# APPLICATION PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    """Application-wide provider, created from the environment on first use."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(config: Optional[DatabaseConfig] = None) -> DatabaseSessionProvider:
    """
    Initialize the application provider during startup.

    Args:
        config: ``database`` config section; environment variables still win
    """
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
    _db_provider.init()
    return _db_provider


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session of the application provider."""
    yield from get_db_provider().get_session()


def close_db() -> None:
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None


def create_test_provider(engine: Optional[Engine] = None) -> DatabaseSessionProvider:
    """Provider around a pre-built engine, in-memory SQLite otherwise."""
    return DatabaseSessionProvider(settings=DatabaseSettings(url="sqlite://"), engine=engine)
