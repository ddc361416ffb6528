"""Session scoping helper shared by repositories."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def session_scope(
    session_factory: Callable[[], Session], session: Session | None = None
) -> Iterator[Session]:
    """Yield ``session`` as-is, or open, commit and close a new one.

    Passing an outer session lets several repositories write in one
    transaction; the caller then owns the commit.
    """
    if session is not None:
        yield session
        return
    with session_factory() as owned:
        yield owned
        owned.commit()
