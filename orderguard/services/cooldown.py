"""Cooldown detector: has this phone/IP ordered within the last W hours?

Checks are read-only. `record_order` is the only mutator and is called once
per confirmed order, never on a check. Concurrent orders from the same
identifier may both pass; this is a best-effort window, not a lock.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from orderguard.database import utcnow
from orderguard.models.signals import CooldownStatus, IdentifierType
from orderguard.services.normalize import normalize_identifier
from orderguard.services.order_history import OrderHistory
from orderguard.services.signal_store import SignalStore

logger = logging.getLogger(__name__)


def _status(last_order_at: Optional[datetime], window_hours: int, now: datetime) -> CooldownStatus:
    if last_order_at is None:
        return CooldownStatus(blocked=False, remaining_seconds=0, last_order_at=None)

    window = window_hours * 3600
    elapsed = (now - last_order_at).total_seconds()
    remaining = max(0, math.ceil(window - elapsed))
    return CooldownStatus(
        blocked=elapsed < window,
        remaining_seconds=remaining,
        last_order_at=last_order_at,
    )


class CooldownDetector:
    def __init__(self, store: SignalStore, history: Optional[OrderHistory] = None):
        self.store = store
        self.history = history

    def check_cooldown(
        self,
        identifier_type: IdentifierType,
        identifier_value: str,
        window_hours: int,
        now: Optional[datetime] = None,
    ) -> CooldownStatus:
        now = now or utcnow()
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            return _status(None, window_hours, now)
        return _status(self.store.get_last_order_at(identifier_type, value), window_hours, now)

    def record_order(
        self,
        identifier_type: IdentifierType,
        identifier_value: str,
        now: Optional[datetime] = None,
    ) -> None:
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            return
        self.store.put_last_order_at(identifier_type, value, now or utcnow())

    def check_history(
        self,
        identifier_type: IdentifierType,
        identifier_value: str,
        window_hours: int,
        at: datetime,
        exclude_order_id: Optional[int] = None,
    ) -> CooldownStatus:
        """Evaluate the cooldown as it stood at `at`, from order history rather than records.

        Used when scoring an order after the fact: its own cooldown record has
        already been overwritten, so the order is excluded by id.
        """
        if self.history is None:
            raise RuntimeError("check_history needs an OrderHistory")
        value = normalize_identifier(identifier_type, identifier_value)
        if not value:
            return _status(None, window_hours, at)
        last = self.history.last_order_at(identifier_type, value, at, exclude_order_id)
        return _status(last, window_hours, at)

    def prune(self, retention_days: int, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        removed = self.store.prune_cooldowns(cutoff)
        if removed:
            logger.info("Pruned %d cooldown records older than %s", removed, cutoff.isoformat())
        return removed
