"""Fraud score aggregation with a per-phone cache and chunked batch recompute.

A score combines independent signals into a 0-100 value:

- blocklist hit on the order's phone, IP or device: 75 (on its own lands in HIGH)
- prior order from the phone inside the phone cooldown window: 15
- duplicate address at or above max_orders_per_address: 20, +5 per extra, max 35
- similar customer name on another phone's recent order: up to 20
- reputation (share of the phone's orders cancelled/failed/returned): up to 40

A signal whose source fails contributes 0 and the score is logged as partial.
"""
import logging
import math
import sqlite3
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from orderguard.database import utcnow
from orderguard.errors import BatchChunkFailure, InvalidIdentifier, OrderNotFound, SignalUnavailable
from orderguard.models.orders import OrderRecord
from orderguard.models.scoring import (
    BatchJobState,
    BatchMode,
    FraudScoreCache,
    FraudScoreResponse,
    RiskTier,
    Signal,
    SignalKind,
)
from orderguard.models.settings import GuardSettings
from orderguard.models.signals import IdentifierType
from orderguard.services.blocklist import BlocklistMatcher
from orderguard.services.cooldown import CooldownDetector
from orderguard.services.normalize import normalize_phone
from orderguard.services.order_history import OrderHistory
from orderguard.services.signal_store import SignalStore
from orderguard.services.similarity import DuplicateDetector, fingerprint_from_order

BLOCKLIST_WEIGHT = 75
COOLDOWN_WEIGHT = 15
DUPLICATE_ADDRESS_BASE = 20
DUPLICATE_ADDRESS_STEP = 5
DUPLICATE_ADDRESS_CAP = 35
NAME_SIMILARITY_WEIGHT = 20
REPUTATION_WEIGHT = 40

DEFAULT_BATCH_SIZE = 10

logger = logging.getLogger(__name__)

_SOURCE_ERRORS = (sqlite3.Error, SignalUnavailable)


def map_risk_tier(score: int) -> RiskTier:
    """Map numeric score to risk tier: 40 starts Medium, High is above 70."""
    if score < 40:
        return RiskTier.LOW
    elif score <= 70:
        return RiskTier.MEDIUM
    else:
        return RiskTier.HIGH


class FraudScoreAggregator:
    def __init__(
        self,
        store: SignalStore,
        history: OrderHistory,
        settings: GuardSettings,
        reputation: Optional[Callable[[str], float]] = None,
    ):
        self.store = store
        self.history = history
        self.settings = settings
        self.reputation = reputation or history.cancellation_ratio
        self.blocklist = BlocklistMatcher(store, history)
        self.cooldown = CooldownDetector(store, history)
        self.duplicates = DuplicateDetector(history)

    def is_fresh(self, entry: FraudScoreCache, now: datetime) -> bool:
        return (now - entry.computed_at).total_seconds() < self.settings.cache_ttl_seconds

    def get_score(
        self,
        phone: str,
        order_id: Optional[int] = None,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> FraudScoreResponse:
        now = now or utcnow()
        key = normalize_phone(phone)
        if not key:
            raise InvalidIdentifier(IdentifierType.PHONE.value, phone)

        if not force_refresh:
            cached = self.store.get_score(key)
            if cached is not None and self.is_fresh(cached, now):
                return FraudScoreResponse(
                    phone=key,
                    score=cached.score,
                    risk_tier=cached.risk_tier,
                    cached=True,
                    computed_at=cached.computed_at,
                    signals=cached.signals_snapshot,
                )

        if order_id is not None:
            order = self.history.get_order(order_id)
            if order is None:
                raise OrderNotFound(order_id)
        else:
            order = self.history.latest_order_for_phone(key)

        entry = self.compute(key, order, now)
        return FraudScoreResponse(
            phone=key,
            score=entry.score,
            risk_tier=entry.risk_tier,
            cached=False,
            computed_at=entry.computed_at,
            signals=entry.signals_snapshot,
        )

    def compute(self, phone: str, order: Optional[OrderRecord], now: datetime) -> FraudScoreCache:
        """Compute and persist a fresh score for `phone`, using `order` for order-level signals."""
        signals, failed_sources = self.collect_signals(phone, order)
        if failed_sources:
            logger.warning(
                "Partial fraud score for %s: %s unavailable, counted as 0",
                phone,
                ", ".join(failed_sources),
            )

        total = sum(s.contribution for s in signals)
        score = min(max(total, 0), 100)
        entry = FraudScoreCache(
            phone=phone,
            score=score,
            risk_tier=map_risk_tier(score),
            computed_at=now,
            signals_snapshot={s.kind: s.contribution for s in signals},
        )
        self.store.put_score(entry)
        if order is not None:
            self.history.save_score(order.id, entry.score, entry.risk_tier.value)
        return entry

    def collect_signals(
        self, phone: str, order: Optional[OrderRecord]
    ) -> Tuple[List[Signal], List[str]]:
        signals: List[Signal] = []
        failed: List[str] = []
        collectors = [
            (SignalKind.BLOCKLIST, self._blocklist_signal),
            (SignalKind.COOLDOWN, self._cooldown_signal),
            (SignalKind.DUPLICATE_ADDRESS, self._address_signal),
            (SignalKind.NAME_SIMILARITY, self._name_signal),
            (SignalKind.REPUTATION, self._reputation_signal),
        ]
        for kind, collector in collectors:
            try:
                signal = collector(phone, order)
            except _SOURCE_ERRORS as exc:
                logger.warning("Signal %s failed for %s: %s", kind.value, phone, exc)
                failed.append(kind.value)
                continue
            if signal is not None:
                signals.append(signal)
        return signals, failed

    def _blocklist_signal(self, phone: str, order: Optional[OrderRecord]) -> Optional[Signal]:
        hits = []
        if self.blocklist.is_blocked(IdentifierType.PHONE, phone):
            hits.append(IdentifierType.PHONE.value)
        if order is not None:
            if order.ip and self.blocklist.is_blocked(IdentifierType.IP, order.ip):
                hits.append(IdentifierType.IP.value)
            if order.device_id and self.blocklist.is_blocked(IdentifierType.DEVICE, order.device_id):
                hits.append(IdentifierType.DEVICE.value)
        if not hits:
            return None
        return Signal(
            kind=SignalKind.BLOCKLIST,
            contribution=BLOCKLIST_WEIGHT,
            detail=f"Blocklisted {', '.join(hits)}",
        )

    def _cooldown_signal(self, phone: str, order: Optional[OrderRecord]) -> Optional[Signal]:
        if order is None:
            return None
        status = self.cooldown.check_history(
            IdentifierType.PHONE,
            phone,
            self.settings.phone_cooldown_hours,
            at=order.created_at,
            exclude_order_id=order.id,
        )
        if not status.blocked:
            return None
        return Signal(
            kind=SignalKind.COOLDOWN,
            contribution=COOLDOWN_WEIGHT,
            detail=f"Previous order from this phone within {self.settings.phone_cooldown_hours}h",
        )

    def _address_signal(self, phone: str, order: Optional[OrderRecord]) -> Optional[Signal]:
        if order is None:
            return None
        matches = self.duplicates.find_address_matches(
            fingerprint_from_order(order),
            self.settings.address_window_hours,
            limit=self.settings.recent_order_limit,
        )
        count = len(matches)
        threshold = self.settings.max_orders_per_address
        if count < threshold:
            return None
        contribution = min(
            DUPLICATE_ADDRESS_BASE + DUPLICATE_ADDRESS_STEP * (count - threshold),
            DUPLICATE_ADDRESS_CAP,
        )
        return Signal(
            kind=SignalKind.DUPLICATE_ADDRESS,
            contribution=contribution,
            detail=f"{count} other orders to the same address in {self.settings.address_window_hours}h",
        )

    def _name_signal(self, phone: str, order: Optional[OrderRecord]) -> Optional[Signal]:
        if order is None:
            return None
        matches = self.duplicates.find_name_matches(
            fingerprint_from_order(order),
            self.settings.name_window_hours,
            self.settings.name_similarity_threshold,
            limit=self.settings.recent_order_limit,
        )
        if not matches:
            return None
        best = max(m.similarity for m in matches)
        return Signal(
            kind=SignalKind.NAME_SIMILARITY,
            contribution=round(NAME_SIMILARITY_WEIGHT * best / 100),
            detail=f"Customer name {best}% similar to {len(matches)} recent order(s)",
        )

    def _reputation_signal(self, phone: str, order: Optional[OrderRecord]) -> Optional[Signal]:
        # External source: any failure or a non-finite ratio means unavailable.
        try:
            ratio = float(self.reputation(phone))
        except Exception as exc:
            raise SignalUnavailable(SignalKind.REPUTATION.value, f"{type(exc).__name__}: {exc}") from exc
        if not math.isfinite(ratio):
            raise SignalUnavailable(SignalKind.REPUTATION.value, f"non-finite ratio {ratio}")
        ratio = min(max(ratio, 0.0), 1.0)
        contribution = round(REPUTATION_WEIGHT * ratio)
        if contribution == 0:
            return None
        return Signal(
            kind=SignalKind.REPUTATION,
            contribution=contribution,
            detail=f"{ratio:.0%} of previous orders cancelled or returned",
        )

    def _score_batch_order(self, order: OrderRecord, mode: BatchMode, now: datetime) -> bool:
        """Score one order of a chunk; False when skipped. Any failure surfaces as BatchChunkFailure."""
        if not order.phone:
            raise BatchChunkFailure(order.id, "order has no usable phone")
        try:
            if mode == BatchMode.MISSING_ONLY:
                cached = self.store.get_score(order.phone)
                if cached is not None and self.is_fresh(cached, now):
                    return False
            self.get_score(order.phone, order.id, force_refresh=True, now=now)
        except Exception as exc:
            raise BatchChunkFailure(order.id, f"{type(exc).__name__}: {exc}") from exc
        return True

    def run_batch(
        self,
        offset: int = 0,
        mode: BatchMode = BatchMode.MISSING_ONLY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        state: Optional[BatchJobState] = None,
        now: Optional[datetime] = None,
    ) -> BatchJobState:
        """Score one chunk of orders in ascending id order and return the next state.

        The caller drives the run by passing the returned state back in until
        `completed` is set. Nothing is checkpointed between calls; an abandoned
        run starts over from offset 0. Only one run may be active at a time and
        the caller enforces that.
        """
        now = now or utcnow()
        state = state or BatchJobState(offset=offset, mode=mode)
        total = self.history.count_orders()
        page = self.history.orders_page(offset, batch_size)

        updated = failed = skipped = 0
        for order in page:
            try:
                if self._score_batch_order(order, mode, now):
                    updated += 1
                else:
                    skipped += 1
            except BatchChunkFailure as exc:
                logger.warning("Batch scoring skipped %s", exc)
                failed += 1

        next_offset = offset + len(page)
        completed = len(page) < batch_size or next_offset >= total
        result = BatchJobState(
            offset=next_offset,
            mode=mode,
            total_updated=state.total_updated + updated,
            total_failed=state.total_failed + failed,
            total_skipped=state.total_skipped + skipped,
            total_processed=state.total_processed + len(page),
            completed=completed,
        )
        logger.info(
            "Batch chunk at offset %d: %d updated, %d skipped, %d failed%s",
            offset,
            updated,
            skipped,
            failed,
            " (completed)" if completed else "",
        )
        return result
