import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from .errors import InvalidPaginationError, TransactionHistoryNotFoundError
from .models import ChangeType, EntityType, TransactionHistory
from .repository import InMemoryStorage, UnitOfWork

logger = logging.getLogger(__name__)


def validate_pagination(page_size: int, offset: int) -> None:
    if page_size <= 0:
        raise InvalidPaginationError("page_size must be greater than 0.")
    if offset < 0:
        raise InvalidPaginationError("offset cannot be negative.")


class AuditTrail:
    """Append-only transaction history. Entries are frozen models and are never updated."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def record(
        self,
        entity_id: str,
        entity_type: EntityType,
        change_type: ChangeType,
        details: str,
        uow: Optional[UnitOfWork] = None,
    ) -> TransactionHistory:
        entry = TransactionHistory(
            id=uuid4(),
            entity_id=entity_id,
            entity_type=entity_type,
            change_type=change_type,
            change_details=details,
            created_at=datetime.now(timezone.utc),
        )
        if uow is not None:
            uow.add(self.storage.transactions, entry)
        else:
            with self.storage.transaction() as own:
                own.add(self.storage.transactions, entry)
        return entry

    def list_for_entity(self, entity_id: str, page_size: int = 10, offset: int = 0) -> list[TransactionHistory]:
        validate_pagination(page_size, offset)
        return self.storage.transactions.query(
            where=lambda t: t.entity_id == entity_id,
            order_by=lambda t: t.created_at,
            descending=True,
            offset=offset,
            limit=page_size,
        )

    def require_history(self, entity_id: str, page_size: int = 10, offset: int = 0) -> list[TransactionHistory]:
        entries = self.list_for_entity(entity_id, page_size, offset)
        if not entries:
            logger.warning("No transaction history found for %s", entity_id)
            raise TransactionHistoryNotFoundError(entity_id)
        logger.info("%d transactions found for %s", len(entries), entity_id)
        return entries
