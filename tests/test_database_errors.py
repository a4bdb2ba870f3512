"""Tests for integrity error classification."""

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.database.errors import IntegrityKind, classify_integrity_error


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        if sqlstate is not None:
            self.sqlstate = sqlstate


def _wrap(orig):
    return IntegrityError("INSERT INTO ...", {}, orig)


@pytest.mark.parametrize("message, expected", [
    ("UNIQUE constraint failed: permissions.name", IntegrityKind.UNIQUE),
    ("UNIQUE constraint failed: role_permissions.role_id, role_permissions.permission_id", IntegrityKind.UNIQUE),
    ("FOREIGN KEY constraint failed", IntegrityKind.FOREIGN_KEY),
    ("NOT NULL constraint failed: roles.name", IntegrityKind.OTHER),
])
def test_sqlite_messages(message, expected):
    assert classify_integrity_error(_wrap(FakeDriverError(message))) is expected


@pytest.mark.parametrize("sqlstate, expected", [
    ("23505", IntegrityKind.UNIQUE),
    ("23503", IntegrityKind.FOREIGN_KEY),
    ("23502", IntegrityKind.OTHER),
])
def test_postgres_sqlstate(sqlstate, expected):
    assert classify_integrity_error(_wrap(FakeDriverError("constraint violated", sqlstate=sqlstate))) is expected


def test_sqlstate_on_cause():
    adapted = FakeDriverError("wrapped")
    adapted.__cause__ = FakeDriverError("duplicate", sqlstate="23505")

    assert classify_integrity_error(_wrap(adapted)) is IntegrityKind.UNIQUE


def test_postgres_message_fallback():
    message = 'duplicate key value violates unique constraint "roles_name_key"'

    assert classify_integrity_error(_wrap(FakeDriverError(message))) is IntegrityKind.UNIQUE
