"""Explicit deny-list of phones, IPs and device ids.

Values are normalized before every store access, so "+880 1711-111111" and
"01711111111" are the same entry. Mutations are idempotent: repeating an add
or remove reports ALREADY_EXISTS / NOT_FOUND instead of failing.
"""
import logging
from datetime import datetime
from typing import List, Optional

from orderguard.database import utcnow
from orderguard.errors import InvalidIdentifier
from orderguard.models.signals import BlocklistEntry, BlocklistOutcome, IdentifierType
from orderguard.services.normalize import normalize_identifier
from orderguard.services.order_history import OrderHistory
from orderguard.services.signal_store import SignalStore

logger = logging.getLogger(__name__)

MAX_REVERSE_LOOKUP = 100


class BlocklistMatcher:
    def __init__(self, store: SignalStore, history: Optional[OrderHistory] = None):
        self.store = store
        self.history = history

    def _normalize(self, identifier_type: IdentifierType, identifier_value: str) -> str:
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            raise InvalidIdentifier(identifier_type.value, identifier_value)
        return value

    def is_blocked(self, identifier_type: IdentifierType, identifier_value: str) -> bool:
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            return False
        return self.store.has_blocklist_entry(identifier_type, value)

    def add(
        self,
        identifier_type: IdentifierType,
        identifier_value: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BlocklistOutcome:
        value = self._normalize(identifier_type, identifier_value)
        if not self.store.insert_blocklist_entry(identifier_type, value, reason, now or utcnow()):
            return BlocklistOutcome.ALREADY_EXISTS
        logger.info("Blocklisted %s %s (%s)", identifier_type.value, value, reason or "no reason")
        return BlocklistOutcome.ADDED

    def remove(self, identifier_type: IdentifierType, identifier_value: str) -> BlocklistOutcome:
        value = normalize_identifier(identifier_type, identifier_value)
        if not value or not self.store.delete_blocklist_entry(identifier_type, value):
            return BlocklistOutcome.NOT_FOUND
        logger.info("Removed %s %s from blocklist", identifier_type.value, value)
        return BlocklistOutcome.REMOVED

    def entries(self, identifier_type: Optional[IdentifierType] = None) -> List[BlocklistEntry]:
        return self.store.list_blocklist(identifier_type)

    def find_orders_for(
        self,
        identifier_type: IdentifierType,
        identifier_value: str,
        limit: int = MAX_REVERSE_LOOKUP,
    ) -> List[int]:
        """Ids of orders referencing the identifier, newest first, at most `limit`."""
        if self.history is None:
            raise RuntimeError("find_orders_for needs an OrderHistory")
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            return []
        return self.history.orders_for(identifier_type, value, min(limit, MAX_REVERSE_LOOKUP))
