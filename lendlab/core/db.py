import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from lendlab.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns the engine and session factory for one application lifetime.

    Nothing in lendlab reaches for a module-level session; callers build a
    Database at start-up and hand sessions to the engines explicitly.
    """

    def __init__(self, uri: str = DB_URI, echo: bool = DEBUG):
        # Only use client_encoding for PostgreSQL, not SQLite
        engine_kwargs = {'echo': echo}
        if uri.startswith('sqlite'):
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if ':memory:' in uri:
                engine_kwargs['poolclass'] = StaticPool
        else:
            engine_kwargs['client_encoding'] = 'utf8'
        self.uri = uri
        self.engine = create_engine(uri, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False)

    def init(self):
        # Register every mapped table before create_all
        import lendlab.models  # noqa: F401
        try:
            Base.metadata.create_all(bind=self.engine)
        except Exception as e:
            logger.warning(f"[WARNING] Database initialization failed: {e}")
            raise
        return self

    def drop(self):
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()

    def session(self):
        """Yields a session and closes it afterwards (FastAPI dependency shape)."""
        session = self.Session()
        try:
            yield session
        finally:
            session.close()
