from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


def install_sqlite_transactions(engine):
    """
    pysqlite defers BEGIN until the first write, so two transactions can both
    read "seat available" before either writes. Take over BEGIN ourselves and
    open every transaction with BEGIN IMMEDIATE: SQLite has a single writer,
    and taking the write lock up front means a transaction never has to
    upgrade a read lock (which fails instead of waiting).
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
