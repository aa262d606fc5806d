"""
Persistence abstraction for the accrual engine.

``Repository[T]`` is a typed collection of pydantic records. Reads return
copies taken under the storage lock, so callers always iterate a consistent
snapshot. Writes are staged on a ``UnitOfWork`` and applied by ``commit()``
all-or-nothing; composite uniqueness constraints are checked inside the same
critical section, which is what serializes concurrent check-then-insert flows.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from .errors import PersistenceError, RecordNotFoundError, StaleRecordError, UniqueConstraintError
from .models import Benefit, Contribution, Member, TransactionHistory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Repository(Generic[T]):
    def __init__(
        self,
        name: str,
        lock: threading.RLock,
        unique_key: Optional[Callable[[T], Optional[Hashable]]] = None,
    ):
        self.name = name
        self._lock = lock
        self._rows: dict = {}
        self._unique_key = unique_key
        self._unique_index: dict[Hashable, object] = {}

    def get(self, record_id) -> Optional[T]:
        with self._lock:
            row = self._rows.get(record_id)
            return row.model_copy() if row is not None else None

    def query(
        self,
        where: Optional[Callable[[T], bool]] = None,
        order_by: Optional[Callable[[T], object]] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[T]:
        with self._lock:
            rows = [r.model_copy() for r in self._rows.values() if where is None or where(r)]

        if order_by is not None:
            if descending:
                # sort() is stable; reversing insertion order first makes the
                # most recently written row win ties.
                rows.reverse()
            rows.sort(key=order_by, reverse=descending)

        end = None if limit is None else offset + limit
        return rows[offset:end]

    def count(self, where: Optional[Callable[[T], bool]] = None) -> int:
        with self._lock:
            return sum(1 for r in self._rows.values() if where is None or where(r))

    def exists(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._unique_index

    def _key_for(self, row: T) -> Optional[Hashable]:
        return self._unique_key(row) if self._unique_key else None

    def _check_insert(self, row: T, staged_ids: set, staged_keys: set) -> None:
        if row.id in self._rows or row.id in staged_ids:
            raise PersistenceError(f"{self.name} record {row.id} already exists")
        staged_ids.add(row.id)
        key = self._key_for(row)
        if key is not None and (key in self._unique_index or key in staged_keys):
            raise UniqueConstraintError(self.name, key)
        if key is not None:
            staged_keys.add(key)

    def _check_update(self, row: T, staged_keys: set, expected: Optional[T] = None) -> None:
        current = self._rows.get(row.id)
        if current is None:
            raise RecordNotFoundError(f"{self.name} record {row.id} not found")
        if expected is not None and current != expected:
            raise StaleRecordError(self.name, row.id)
        key = self._key_for(row)
        if key is None:
            return
        owner = self._unique_index.get(key)
        if (owner is not None and owner != row.id) or key in staged_keys:
            raise UniqueConstraintError(self.name, key)
        staged_keys.add(key)

    def _apply_insert(self, row: T) -> None:
        self._rows[row.id] = row
        key = self._key_for(row)
        if key is not None:
            self._unique_index[key] = row.id

    def _apply_update(self, row: T) -> None:
        old_key = self._key_for(self._rows[row.id])
        if old_key is not None:
            self._unique_index.pop(old_key, None)
        self._apply_insert(row)


class UnitOfWork:
    """Collects writes for one logical operation; nothing is visible until commit."""

    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage
        self._pending: list[tuple[str, Repository, BaseModel, Optional[BaseModel]]] = []
        self.committed = False

    def add(self, repository: Repository[T], row: T) -> T:
        self._pending.append(("insert", repository, row.model_copy(), None))
        return row

    def update(self, repository: Repository[T], row: T, expected: Optional[T] = None) -> T:
        """Stage ``row`` as the new version of its record.

        With ``expected``, commit fails with ``StaleRecordError`` unless the
        stored record still equals it.
        """
        snapshot = expected.model_copy() if expected is not None else None
        self._pending.append(("update", repository, row.model_copy(), snapshot))
        return row

    @property
    def pending(self) -> int:
        return len(self._pending)

    def commit(self) -> None:
        if self.committed:
            raise PersistenceError("Unit of work already committed")
        with self._storage.lock:
            staged: dict[int, tuple[set, set]] = {}
            for op, repository, row, expected in self._pending:
                ids, keys = staged.setdefault(id(repository), (set(), set()))
                if op == "insert":
                    repository._check_insert(row, ids, keys)
                else:
                    repository._check_update(row, keys, expected)
            for op, repository, row, _ in self._pending:
                if op == "insert":
                    repository._apply_insert(row)
                else:
                    repository._apply_update(row)
        self.committed = True
        self._pending.clear()

    def rollback(self) -> None:
        self._pending.clear()


def periodic_contribution_key(contribution: Contribution) -> Optional[Hashable]:
    if not contribution.is_periodic():
        return None
    year, month = contribution.period()
    return (contribution.member_id, year, month)


class InMemoryStorage:
    def __init__(self):
        self.lock = threading.RLock()
        self.members: Repository[Member] = Repository("members", self.lock)
        self.contributions: Repository[Contribution] = Repository(
            "contributions", self.lock, unique_key=periodic_contribution_key
        )
        self.benefits: Repository[Benefit] = Repository("benefits", self.lock)
        self.transactions: Repository[TransactionHistory] = Repository("transactions", self.lock)

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self)

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Commit on clean exit, discard staged writes on any exception."""
        uow = self.unit_of_work()
        try:
            yield uow
        except BaseException:
            uow.rollback()
            raise
        uow.commit()
        logger.debug("Committed unit of work")
