"""
Engine helpers for the standalone schema scripts (init_db.py, migrate_schema.py).

The Flask app gets its engine from Flask-SQLAlchemy; these scripts run outside
an app context and connect with the same DATABASE_URL.
"""
import os
import sys

from sqlalchemy import create_engine, event

from config import engine_options, normalize_database_url


def get_database_url():
    """Get database URL from environment variables."""
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not found", file=sys.stderr)
        sys.exit(1)
    return normalize_database_url(database_url)


def _enable_sqlite_transactional_ddl(engine):
    # pysqlite commits DDL implicitly; take over BEGIN so ALTER/CREATE roll back too
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url=None):
    """Create an engine for schema work. SQLite engines get transactional DDL."""
    url = normalize_database_url(database_url or get_database_url())
    options = engine_options(url)
    if url.startswith("sqlite"):
        options = {}
    engine = create_engine(url, **options)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_transactional_ddl(engine)
    return engine


def primary_key_ddl(engine_or_conn):
    """Auto-increment primary key clause for the connected dialect."""
    if engine_or_conn.dialect.name == "postgresql":
        return "SERIAL PRIMARY KEY"
    return "INTEGER PRIMARY KEY AUTOINCREMENT"
