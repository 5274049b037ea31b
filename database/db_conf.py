from config import settings
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import OperationalError, DisconnectionError, DBAPIError
import logging
import time

logger = logging.getLogger(__name__)


def create_db_engine(database_uri: str) -> Engine:
    """Engine for the record store; SQLite gets thread-shareable connections"""
    if database_uri.startswith('sqlite'):
        connect_args = {'check_same_thread': False}
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            # Single shared connection so every session sees the same in-memory DB
            return create_engine(database_uri, connect_args=connect_args,
                                 poolclass=StaticPool, echo=False)
        logger.info("Using SQLite record store")
        return create_engine(database_uri, connect_args=connect_args, echo=False)

    logger.info("Using server database configuration")
    return create_engine(
        database_uri,
        pool_size=20,
        max_overflow=20,
        pool_pre_ping=True,   # Check connection validity
        pool_recycle=300,     # Recycle every 5 minutes
        pool_timeout=30,
        echo=False
    )


engine = create_db_engine(settings.DATABASE_URI)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    """Create any missing tables"""
    from database.models import Base
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Database session for request handlers"""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def check_db_connection(max_retries=3, bind: Engine = None):
    """
    Tests the database connection with exponential backoff.

    Returns:
        tuple: (success boolean, message string)
    """
    bind = bind or engine
    retry_count = 0
    backoff = 1

    while retry_count < max_retries:
        try:
            with bind.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True, "Database connection successful"
        except (OperationalError, DisconnectionError, DBAPIError) as e:
            retry_count += 1
            if retry_count < max_retries:
                logger.info(f"Retrying connection in {backoff} seconds (attempt {retry_count}/{max_retries})")
                time.sleep(backoff)
                backoff = min(backoff * 2, 10)
            else:
                return False, f"Database connection failed after {max_retries} attempts: {e}"

    return False, "Database connection failed with an unknown error"
