from contextlib import contextmanager
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from intelliform.utils.logger_config import get_logger

logger = get_logger(__name__)


class DatabaseConfig:
    """Database configuration class"""

    def __init__(self, database_url: str, echo: bool = False):
        logger.info("Initializing database configuration")
        self.database_url = database_url
        logger.info(f"Database URL configured: {self.database_url.split('@')[1] if '@' in self.database_url else self.database_url}")

        if self.is_sqlite:
            engine_kwargs = {"connect_args": {"check_same_thread": False}}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs = {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }

        self.engine = create_engine(self.database_url, echo=echo, **engine_kwargs)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )

        logger.info("Database configuration initialized successfully")

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def dialect_name(self) -> str:
        return "SQLite" if self.is_sqlite else self.engine.dialect.name

    def create_tables(self):
        """Create all database tables"""
        try:
            logger.info("Creating database tables")
            from intelliform.model.form_entities import Base
            Base.metadata.create_all(bind=self.engine)
            logger.info("✅ Database tables created successfully")
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
            raise

    def drop_tables(self):
        """Drop all database tables"""
        try:
            logger.warning("Dropping all database tables")
            from intelliform.model.form_entities import Base
            Base.metadata.drop_all(bind=self.engine)
            logger.info("✅ Database tables dropped successfully")
        except Exception as e:
            logger.error(f"❌ Table dropping failed: {e}")
            raise

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
                logger.info("✅ Database connection test successful")
                return True
        except Exception as e:
            logger.error(f"❌ Database connection test failed: {e}")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get database session with automatic cleanup"""
        session = self.SessionLocal()
        try:
            logger.debug("Database session created")
            yield session
            session.commit()
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()
            logger.debug("Database session closed")

    def dispose(self):
        self.engine.dispose()


def get_db_config(request: Request) -> DatabaseConfig:
    """Dependency for the application's database configuration"""
    return request.app.state.db_config


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """Dependency for getting database session"""
    with request.app.state.db_config.get_session() as session:
        yield session


def init_database(db_config: DatabaseConfig):
    """Initialize database tables"""
    logger.info("Initializing database...")
    if db_config.test_connection():
        logger.info("✅ Database connection successful")
        db_config.create_tables()
    else:
        error_msg = "❌ Database connection failed"
        logger.error(error_msg)
        raise ConnectionError(error_msg)
