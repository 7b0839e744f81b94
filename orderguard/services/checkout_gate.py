"""Checkout-time allow/flag/block decision.

Evaluation only reads: it records no cooldowns and writes no scores. Detector
faults fail open (no signal), except the blocklist when
`blocklist_fail_closed` is set.

Reasons are short machine-readable strings:
  "phone" / "ip" / "device"      blocklisted identifier
  "blocklist_unavailable"        blocklist lookup failed while fail-closed
  "whitelisted"                  whitelist bypass
  "invalid_phone"                phone is not a Bangladeshi mobile number
  "phone_cooldown:<seconds>"     remaining phone cooldown
  "ip_cooldown:<seconds>"        remaining IP cooldown
  "duplicate_address:<count>"    recent orders to the same address
  "similar_name:<percent>"       best name similarity on another phone's order
"""
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from orderguard.database import utcnow
from orderguard.models.decision import Action, Decision
from orderguard.models.settings import GuardSettings
from orderguard.models.signals import IdentifierType
from orderguard.services.blocklist import BlocklistMatcher
from orderguard.services.cooldown import CooldownDetector
from orderguard.services.normalize import ip_matches, is_valid_bd_mobile, normalize_phone
from orderguard.services.order_history import OrderHistory
from orderguard.services.signal_store import SignalStore
from orderguard.services.similarity import DuplicateDetector, build_fingerprint

logger = logging.getLogger(__name__)


class _Verdict:
    def __init__(self):
        self.action = Action.ALLOW
        self.reasons: List[str] = []

    def add(self, action: Action, reason: str) -> None:
        if action.severity > self.action.severity:
            self.action = action
        self.reasons.append(reason)

    def decision(self) -> Decision:
        return Decision(action=self.action, reasons=self.reasons)


class CheckoutGate:
    def __init__(self, store: SignalStore, history: OrderHistory, settings: GuardSettings):
        self.settings = settings
        self.blocklist = BlocklistMatcher(store, history)
        self.cooldown = CooldownDetector(store, history)
        self.duplicates = DuplicateDetector(history)

    @property
    def soft_action(self) -> Action:
        return Action.FLAG if self.settings.warn_only else Action.BLOCK

    def is_whitelisted(self, phone: str, ip: str) -> bool:
        if not self.settings.whitelist_enabled:
            return False
        key = normalize_phone(phone)
        if key and key in {normalize_phone(p) for p in self.settings.whitelisted_phones}:
            return True
        return bool(ip) and any(ip_matches(ip, p) for p in self.settings.whitelisted_ips)

    def evaluate(
        self,
        phone: str,
        ip: str,
        address: str,
        name: str,
        device_id: str = "",
        city: str = "",
        postcode: str = "",
        now: Optional[datetime] = None,
    ) -> Decision:
        now = now or utcnow()
        verdict = _Verdict()

        self._check_blocklist(verdict, phone, ip, device_id)
        if verdict.action == Action.BLOCK:
            return verdict.decision()

        if self.is_whitelisted(phone, ip):
            return Decision(action=Action.ALLOW, reasons=["whitelisted"])

        if self.settings.phone_validation_enabled and phone and not is_valid_bd_mobile(phone):
            verdict.add(self.soft_action, "invalid_phone")
        self._check_cooldowns(verdict, phone, ip, now)
        self._check_duplicates(verdict, phone, address, city, postcode, name, now)
        return verdict.decision()

    def _check_blocklist(self, verdict: _Verdict, phone: str, ip: str, device_id: str) -> None:
        identifiers = [
            (IdentifierType.PHONE, phone),
            (IdentifierType.IP, ip),
            (IdentifierType.DEVICE, device_id),
        ]
        for identifier_type, value in identifiers:
            if not value:
                continue
            try:
                if self.blocklist.is_blocked(identifier_type, value):
                    verdict.add(Action.BLOCK, identifier_type.value)
            except sqlite3.Error as exc:
                if self.settings.blocklist_fail_closed:
                    logger.error("Blocklist lookup failed, blocking checkout: %s", exc)
                    verdict.add(Action.BLOCK, "blocklist_unavailable")
                    return
                logger.warning("Blocklist lookup failed, allowing checkout: %s", exc)
                return

    def _check_cooldowns(self, verdict: _Verdict, phone: str, ip: str, now: datetime) -> None:
        checks = []
        if self.settings.phone_cooldown_enabled and phone:
            checks.append((IdentifierType.PHONE, phone, self.settings.phone_cooldown_hours))
        if self.settings.ip_cooldown_enabled and ip:
            checks.append((IdentifierType.IP, ip, self.settings.ip_cooldown_hours))

        for identifier_type, value, hours in checks:
            try:
                status = self.cooldown.check_cooldown(identifier_type, value, hours, now=now)
            except sqlite3.Error as exc:
                logger.warning("Cooldown check for %s failed, ignoring: %s", identifier_type.value, exc)
                continue
            if status.blocked:
                verdict.add(
                    self.soft_action, f"{identifier_type.value}_cooldown:{status.remaining_seconds}"
                )

    def _check_duplicates(
        self,
        verdict: _Verdict,
        phone: str,
        address: str,
        city: str,
        postcode: str,
        name: str,
        now: datetime,
    ) -> None:
        fingerprint = build_fingerprint(phone, address, city, postcode, name, now)
        limit = self.settings.recent_order_limit

        if self.settings.address_detection_enabled:
            try:
                matches = self.duplicates.find_address_matches(
                    fingerprint, self.settings.address_window_hours, limit=limit
                )
            except sqlite3.Error as exc:
                logger.warning("Address duplicate check failed, ignoring: %s", exc)
                matches = []
            if len(matches) >= self.settings.max_orders_per_address:
                verdict.add(self.soft_action, f"duplicate_address:{len(matches)}")

        if self.settings.name_similarity_enabled:
            try:
                matches = self.duplicates.find_name_matches(
                    fingerprint,
                    self.settings.name_window_hours,
                    self.settings.name_similarity_threshold,
                    limit=limit,
                )
            except sqlite3.Error as exc:
                logger.warning("Name similarity check failed, ignoring: %s", exc)
                matches = []
            if matches:
                # Fuzzy similarity alone never hard-blocks.
                best = max(m.similarity for m in matches)
                verdict.add(Action.FLAG, f"similar_name:{best}")
