"""
Database connection settings
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

import config

# Base for the ORM models
Base = declarative_base()

# Session factory, bound in configure_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

engine = None


def resolve_database_url(url: str = None) -> str:
    """Pick the database URL: explicit argument, DATABASE_URL, then local SQLite"""
    url = url or config.DATABASE_URL
    if not url:
        return "sqlite:///./field_crm.db"
    # Hosted Postgres providers hand out postgres:// URLs
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


def _build_engine(url: str):
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": 30
            },
            pool_pre_ping=True,
            echo=False
        )

        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragmas(dbapi_conn, connection_record):
            """WAL journal and a busy timeout on every new connection"""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        return sqlite_engine

    if url.startswith("postgresql"):
        return create_engine(
            url,
            pool_pre_ping=True,
            echo=False,
            connect_args={"connect_timeout": 10}
        )

    # MySQL and anything else SQLAlchemy understands
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False
    )


def configure_engine(url: str = None):
    """
    Create the engine for the given URL and bind the session factory to it
    """
    global engine
    if engine is not None:
        engine.dispose()
    engine = _build_engine(resolve_database_url(url))
    SessionLocal.configure(bind=engine)
    return engine


def get_db():
    """
    Yield a database session and close it afterwards
    """
    if engine is None:
        configure_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Create the tables that do not exist yet
    """
    import database.models  # noqa: F401  register the models on Base
    if engine is None:
        configure_engine()
    Base.metadata.create_all(bind=engine, checkfirst=True)
