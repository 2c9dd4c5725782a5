from contextlib import contextmanager

from sqlalchemy.exc import OperationalError

from models import db
from services.errors import ConcurrentConflict, TransientInfrastructureError

# serialization failure, deadlock, lock timeout, statement timeout
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


def _is_conflict(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    state = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if state in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


@contextmanager
def atomic(serializable: bool = False, timeout_seconds=None):
    """
    Run the block as one transaction on the request session.

    With serializable=True the connection is opened at SERIALIZABLE isolation
    (BEGIN IMMEDIATE on SQLite). Conflicts detected by the database surface as
    ConcurrentConflict so callers can retry the whole operation.
    """
    session = db.session
    # close whatever implicit transaction earlier reads opened
    session.commit()
    try:
        if serializable:
            conn = session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
        else:
            conn = session.connection()
        if timeout_seconds and conn.dialect.name == "postgresql":
            ms = int(timeout_seconds * 1000)
            conn.exec_driver_sql(f"SET LOCAL statement_timeout = {ms}")
            conn.exec_driver_sql(f"SET LOCAL lock_timeout = {ms}")
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        if _is_conflict(exc):
            raise ConcurrentConflict() from exc
        raise TransientInfrastructureError() from exc
    except BaseException:
        session.rollback()
        raise
