# Overview: Shared Flask-SQLAlchemy and Flask-Migrate instances.

"""
Bound to the app in create_app().

db.session is scoped to the app context, so a request's services, the
realtime outbox (session.info) and the audit SAVEPOINTs share one session.
Migrations under backend/migrations/versions run through Flask-Migrate.
"""
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()
# Batch mode lets ALTERs run on SQLite
migrate = Migrate(compare_type=True, render_as_batch=True)


def enable_sqlite_savepoints(engine) -> None:
    """
    Make SAVEPOINT work inside real transactions on pysqlite.

    The driver defers BEGIN until the first DML statement, so a SAVEPOINT
    issued before any write runs outside a transaction and its RELEASE
    commits on the spot. Turning the driver's own transaction handling off
    and emitting BEGIN whenever SQLAlchemy starts a transaction keeps every
    savepoint nested in the unit of work that opened it.
    """
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
