"""
Classification of low-level integrity failures.

This is the only place that knows how each datastore reports constraint
violations. Callers get back a small enum and decide what it means for them.
"""
import enum

from sqlalchemy.exc import IntegrityError


# PostgreSQL SQLSTATE codes (class 23, integrity constraint violation)
PG_UNIQUE_VIOLATION = "23505"
PG_FOREIGN_KEY_VIOLATION = "23503"


class IntegrityKind(str, enum.Enum):
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"
    OTHER = "other"


def _sqlstate(orig: object) -> str | None:
    # asyncpg exposes `sqlstate`, psycopg exposes `pgcode`
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if isinstance(code, str):
            return code
    # SQLAlchemy's asyncpg adapter keeps the driver exception on __cause__
    cause = getattr(orig, "__cause__", None)
    if cause is not None and cause is not orig:
        code = getattr(cause, "sqlstate", None)
        if isinstance(code, str):
            return code
    return None


def classify_integrity_error(exc: IntegrityError) -> IntegrityKind:
    """
    Work out which kind of constraint an IntegrityError violated.

    Primary keys count as unique constraints.
    """
    code = _sqlstate(exc.orig)
    if code == PG_UNIQUE_VIOLATION:
        return IntegrityKind.UNIQUE
    if code == PG_FOREIGN_KEY_VIOLATION:
        return IntegrityKind.FOREIGN_KEY

    message = str(exc.orig).upper()
    if "UNIQUE CONSTRAINT FAILED" in message or "DUPLICATE KEY" in message:
        return IntegrityKind.UNIQUE
    if "FOREIGN KEY CONSTRAINT FAILED" in message or "FOREIGN KEY CONSTRAINT" in message:
        return IntegrityKind.FOREIGN_KEY
    return IntegrityKind.OTHER
