from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def smart_transaction(session: Session) -> Iterator[Session]:
    """
    Begin a transaction on the given Session and commit it on exit.
    If a transaction is already active (autobegin after a read, or a caller's
    own block), open a SAVEPOINT instead so the caller keeps ownership of the
    outer commit.
    Usage:
        with smart_transaction(db):
            ... DB work ...
    """
    if session.in_transaction():
        cm = session.begin_nested()
    else:
        cm = session.begin()
    with cm:
        yield session
