"""Database configuration and initialization."""
from flask import current_app
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()


def _engine_options(app):
    """Pool settings: Postgres gets a real pool, SQLite a single shared connection."""
    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite'):
        return {
            'connect_args': {'check_same_thread': False},
            'poolclass': StaticPool,
        }
    return {
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """
    Initialize database connection for this app instance.

    The engine and session registry live on ``app.extensions`` so every
    app (and every test) gets its own handle instead of a process global.
    """
    engine = create_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        **_engine_options(app)
    )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    app.extensions['db_engine'] = engine
    app.extensions['db_session'] = db_session

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all(app):
    """Create every table known to the models package."""
    import qrorder.models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(bind=app.extensions['db_engine'])


def drop_all(app):
    import qrorder.models  # noqa: F401
    Base.metadata.drop_all(bind=app.extensions['db_engine'])


def get_session():
    """Get database session for the current app."""
    return current_app.extensions['db_session']
