"""Duplicate-address and similar-name detection over a window of recent orders.

Both checks scan a bounded candidate set (the most recent `limit` active
orders inside the window), so cost follows recent volume rather than total
order history. An empty result means "no match", never "no data".
"""
from datetime import datetime
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from orderguard.models.orders import OrderFingerprint, OrderRecord
from orderguard.models.signals import MatchType, SimilarMatch
from orderguard.services.normalize import normalize_address, normalize_name, normalize_phone
from orderguard.services.order_history import OrderHistory

DEFAULT_NAME_THRESHOLD = 80
DEFAULT_CANDIDATE_LIMIT = 100
MIN_NAME_LENGTH = 3


def name_similarity(a: str, b: str) -> int:
    """Edit-distance similarity of two names as a 0-100 percentage. Symmetric."""
    return round(Levenshtein.normalized_similarity(normalize_name(a), normalize_name(b)) * 100)


def fingerprint_from_order(order: OrderRecord) -> OrderFingerprint:
    return OrderFingerprint(
        phone=order.phone,
        address=order.address_key,
        customer_name=order.name_key,
        created_at=order.created_at,
        order_id=order.id,
    )


def build_fingerprint(
    phone: str,
    address_1: str,
    city: str,
    postcode: str,
    customer_name: str,
    created_at: datetime,
) -> OrderFingerprint:
    return OrderFingerprint(
        phone=normalize_phone(phone),
        address=normalize_address(address_1, city, postcode),
        customer_name=normalize_name(customer_name),
        created_at=created_at,
    )


class DuplicateDetector:
    def __init__(self, history: OrderHistory):
        self.history = history

    def _candidates(
        self, fingerprint: OrderFingerprint, window_hours: int, limit: int
    ) -> List[OrderRecord]:
        orders = self.history.recent_orders(window_hours, limit, until=fingerprint.created_at)
        return [o for o in orders if o.id != fingerprint.order_id]

    def find_address_matches(
        self,
        fingerprint: OrderFingerprint,
        window_hours: int,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
        candidates: Optional[List[OrderRecord]] = None,
    ) -> List[SimilarMatch]:
        if not fingerprint.address:
            return []
        if candidates is None:
            candidates = self._candidates(fingerprint, window_hours, limit)
        return [
            SimilarMatch(order_id=o.id, match_type=MatchType.ADDRESS, similarity=100)
            for o in candidates
            if o.address_key == fingerprint.address
        ]

    def find_name_matches(
        self,
        fingerprint: OrderFingerprint,
        window_hours: int,
        threshold: int = DEFAULT_NAME_THRESHOLD,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
        candidates: Optional[List[OrderRecord]] = None,
    ) -> List[SimilarMatch]:
        """Orders from other phones whose customer name is at least `threshold` similar."""
        if len(fingerprint.customer_name) < MIN_NAME_LENGTH:
            return []
        if candidates is None:
            candidates = self._candidates(fingerprint, window_hours, limit)

        matches = []
        for order in candidates:
            # Same phone reordering under its own name is the cooldown's concern.
            if fingerprint.phone and order.phone == fingerprint.phone:
                continue
            if not order.name_key:
                continue
            score = name_similarity(fingerprint.customer_name, order.name_key)
            if score >= threshold:
                matches.append(
                    SimilarMatch(order_id=order.id, match_type=MatchType.NAME, similarity=score)
                )
        return matches

    def find_similar(
        self,
        fingerprint: OrderFingerprint,
        window_hours: int,
        name_threshold: int = DEFAULT_NAME_THRESHOLD,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> List[SimilarMatch]:
        candidates = self._candidates(fingerprint, window_hours, limit)
        return self.find_address_matches(
            fingerprint, window_hours, candidates=candidates
        ) + self.find_name_matches(
            fingerprint, window_hours, name_threshold, candidates=candidates
        )
