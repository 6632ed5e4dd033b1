"""Database configuration and initialization."""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from backoffice.exceptions import BackofficeError, StorageError

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER primary keys
IdType = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def _engine_options(database_uri, echo):
    """Build create_engine kwargs for the configured backend."""
    if database_uri.startswith('sqlite'):
        # In-memory SQLite must share one connection across the scoped session
        return {
            'echo': echo,
            'connect_args': {'check_same_thread': False},
            'poolclass': StaticPool,
        }
    return {
        'echo': echo,
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        **_engine_options(database_uri, app.config.get('SQLALCHEMY_ECHO', False))
    )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_schema():
    """Create all tables on the bound engine (development and tests)."""
    import backoffice.models  # noqa: F401 - registers every table on Base.metadata
    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


@contextmanager
def unit_of_work(session):
    """
    Run a block of writes as one atomic commit.

    Commits when the block exits normally and rolls back on any exception.
    Business errors are re-raised untouched; SQLAlchemy failures are
    re-raised as StorageError so callers never see driver details.
    """
    try:
        yield session
        session.commit()
    except BackofficeError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Unit of work rolled back after storage failure")
        raise StorageError() from e
    except Exception:
        session.rollback()
        logger.exception("Unit of work rolled back after unexpected error")
        raise
