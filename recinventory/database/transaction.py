"""Atomic batch commits against the record store.

Every mutation (an import batch, a schedule-wide edit, a single save or delete
together with its audit events) runs inside one ``atomic()`` block: either all
of it is committed, or the session is rolled back and nothing is visible.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from recinventory.errors import DuplicateKeyError, InventoryError, TransactionAbortError

logger = logging.getLogger(__name__)


class TransactionCoordinator:
    """Serializes and commits batches of storage operations."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        # One batch in flight at a time against the store
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self, label: str = "batch") -> Iterator[Session]:
        """Open a session whose work is committed only if the block completes.

        Domain errors (validation, duplicate key, mapping) are re-raised as-is
        after rollback; storage faults are wrapped in TransactionAbortError.
        """
        with self._lock:
            session = self.session_factory()
            try:
                yield session
                session.commit()
                logger.debug(f"Committed {label}")
            except InventoryError as e:
                session.rollback()
                logger.error(f"Rolled back {label}: {type(e).__name__}: {e.message}")
                raise
            except IntegrityError as e:
                session.rollback()
                logger.error(f"Rolled back {label}: {type(e).__name__}: {str(e)}")
                detail = str(e.orig)
                if "series.schedule_number" in detail or "ix_series_schedule_item" in detail:
                    # The natural-key unique index caught what planning did not
                    raise DuplicateKeyError(
                        "Duplicate (schedule_number, item_number) pair",
                        [{"record": None, "message": detail}],
                    ) from e
                raise TransactionAbortError(
                    f"{label} aborted: {type(e).__name__}",
                    [{"record": None, "message": str(e)}],
                ) from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Rolled back {label}: {type(e).__name__}: {str(e)}")
                raise TransactionAbortError(
                    f"{label} aborted: {type(e).__name__}",
                    [{"record": None, "message": str(e)}],
                ) from e
            except Exception as e:
                session.rollback()
                logger.error(f"Rolled back {label}: {type(e).__name__}: {str(e)}")
                raise TransactionAbortError(
                    f"{label} aborted: {str(e)}",
                    [{"record": None, "message": str(e)}],
                ) from e
            finally:
                session.close()

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Session over committed state; anything it changes is discarded."""
        with self._lock:
            session = self.session_factory()
            try:
                yield session
            finally:
                session.rollback()
                session.close()
