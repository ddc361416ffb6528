"""Persistence errors shared by the job, artifact and ledger repositories."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, TypeVar

from sqlalchemy import exc as sa_exc

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "IntegrityConstraintViolation",
    "DatabaseOperationError",
    "DatabaseBusyError",
    "ensure_found",
    "handle_sqlalchemy_errors",
]

T = TypeVar("T")


class AppError(Exception):
    """Base class for application specific errors."""


class RepositoryError(AppError):
    """Base class for persistence layer failures.

    ``entity`` names the table the failing statement touched, when known.
    """

    def __init__(self, message: str, *, entity: str | None = None) -> None:
        super().__init__(f"{entity}: {message}" if entity else message)
        self.entity = entity


class NotFoundError(RepositoryError):
    """Raised when a generation job or artifact id does not exist."""


class IntegrityConstraintViolation(RepositoryError):
    """Raised when a unique key (artifact per job, ledger kind per job) already exists."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


class DatabaseBusyError(DatabaseOperationError):
    """Raised when the database rejected a write because it is locked."""


def ensure_found(record: T | None, *, entity: str, identifier: str) -> T:
    if record is None:
        raise NotFoundError(f"'{identifier}' not found", entity=entity)
    return record


def _translate(exc: sa_exc.SQLAlchemyError, entity: str | None) -> RepositoryError:
    if isinstance(exc, sa_exc.IntegrityError):
        return IntegrityConstraintViolation("integrity constraint violated", entity=entity)
    if isinstance(exc, sa_exc.OperationalError) and "locked" in str(exc.orig).lower():
        return DatabaseBusyError("database is locked", entity=entity)
    return DatabaseOperationError("database operation failed", entity=entity)


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy driver errors into repository errors."""
    try:
        yield
    except sa_exc.DBAPIError as exc:
        raise _translate(exc, entity) from exc
