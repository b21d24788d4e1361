import logging

from flask import current_app
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def init_db(app):
    """
    Build the engine and session factory for ``app`` and create tables
    if they are not present.
    """
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    engine = create_engine(
        uri,
        echo=app.config.get("SQLALCHEMY_ECHO", False),
        future=True,
        **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
    )

    if engine.dialect.name == "sqlite":
        # SQLite leaves foreign keys off unless asked per connection
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)

    app.extensions["db_engine"] = engine
    app.extensions["db_session_factory"] = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
    )
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return engine


def SessionLocal():
    """Open a new session on the current app's database."""
    return current_app.extensions["db_session_factory"]()
