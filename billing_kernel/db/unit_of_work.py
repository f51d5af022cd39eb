"""
Unit of work -- savepoint scoping for multi-step allocation.

Services flush inside the caller's transaction and never commit.  When a
single step of a larger operation must be undone on its own (one invoice in
a multi-invoice allocation), the step runs inside ``savepoint()``: on error
only that step's writes are rolled back and the exception propagates.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


class UnitOfWork:
    """Wraps the caller-owned session; never commits or rolls back the outer transaction."""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.session.begin_nested():
            yield
