import logging

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

# Process-wide connection pool. The engine is created lazily by Flask-SQLAlchemy
# on first use and shared by every request handled by this process.
db = SQLAlchemy()

_listeners_installed = set()


def _install_query_timeout(engine, timeout_ms):
    if engine.dialect.name != "mysql" or id(engine) in _listeners_installed:
        return

    @event.listens_for(engine, "connect")
    def set_max_execution_time(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET SESSION MAX_EXECUTION_TIME={int(timeout_ms)}")
        cursor.close()

    _listeners_installed.add(id(engine))


def init_database(app):
    """
    Bind the pool to the app and create missing tables.

    A failed first connection disposes the pool so the next request builds
    fresh connections instead of reusing a broken one.
    """
    from app.models import Base

    db.init_app(app)

    with app.app_context():
        engine = db.engine
        _install_query_timeout(engine, app.config.get("DB_QUERY_TIMEOUT_MS", 5000))
        try:
            Base.metadata.create_all(bind=engine, checkfirst=True)
            app.logger.info("Database tables ready")
        except OperationalError as e:
            app.logger.error(f"Initial database connection failed: {e}")
            engine.dispose()
            return False
    return True


def database_is_reachable() -> bool:
    try:
        db.session.execute(text("SELECT 1"))
        return True
    except OperationalError as e:
        logger.warning("Database ping failed: %s", e)
        db.session.rollback()
        db.engine.dispose()
        return False
