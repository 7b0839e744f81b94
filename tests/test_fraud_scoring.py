"""
Tests for the fraud score aggregator.

Tests cover:
- each signal's contribution
- tier mapping boundaries
- cache freshness and forced refresh
- degraded (unavailable) signal sources
- chunked batch recompute
"""
import logging
from datetime import timedelta

import pytest

from orderguard.errors import InvalidIdentifier, OrderNotFound, SignalUnavailable
from orderguard.models.scoring import BatchMode, RiskTier, SignalKind
from orderguard.models.settings import GuardSettings
from orderguard.models.signals import IdentifierType
from orderguard.services.blocklist import BlocklistMatcher
from orderguard.services.fraud_scorer import FraudScoreAggregator, map_risk_tier
from tests.conftest import NOW


def make_aggregator(store, history, **settings):
    return FraudScoreAggregator(store, history, GuardSettings(**settings))


class TestTierMapping:

    @pytest.mark.parametrize("score,tier", [
        (0, RiskTier.LOW),
        (39, RiskTier.LOW),
        (40, RiskTier.MEDIUM),
        (70, RiskTier.MEDIUM),
        (71, RiskTier.HIGH),
        (100, RiskTier.HIGH),
    ])
    def test_boundaries(self, score, tier):
        assert map_risk_tier(score) == tier


class TestSignals:

    def test_clean_order_scores_zero(self, store, history, add_order):
        order = add_order()
        result = make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)
        assert result.score == 0
        assert result.risk_tier == RiskTier.LOW
        assert result.cached is False
        assert result.signals == {}

    def test_blocklisted_phone_lands_in_high(self, store, history, add_order):
        order = add_order(phone="01911111111")
        BlocklistMatcher(store).add(IdentifierType.PHONE, "01911111111")

        result = make_aggregator(store, history).get_score("01911111111", order.id, now=NOW)
        assert result.score == 75
        assert result.risk_tier == RiskTier.HIGH
        assert result.signals[SignalKind.BLOCKLIST] == 75

    def test_blocklisted_device_counts(self, store, history, add_order):
        order = add_order(device_id="dev-bad")
        BlocklistMatcher(store).add(IdentifierType.DEVICE, "dev-bad")
        result = make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)
        assert result.signals[SignalKind.BLOCKLIST] == 75

    def test_repeat_order_within_cooldown(self, store, history, add_order):
        add_order(created_at=NOW - timedelta(hours=3))
        order = add_order(created_at=NOW)
        result = make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)
        assert result.signals == {SignalKind.COOLDOWN: 15}

    def test_duplicate_address_scales_above_threshold(self, store, history, add_order):
        for phone in ("01711111111", "01722222222", "01733333333"):
            add_order(phone=phone, first_name="Other", last_name=phone,
                      created_at=NOW - timedelta(hours=1))
        order = add_order(phone="01799999999", created_at=NOW)

        result = make_aggregator(store, history, max_orders_per_address=2).get_score(
            order.phone, order.id, now=NOW
        )
        # 3 matches with a max of 2: base 20 plus one step
        assert result.signals[SignalKind.DUPLICATE_ADDRESS] == 25

    def test_similar_name_contribution(self, store, history, add_order):
        add_order(phone="01711111111", first_name="Rahim", last_name="Udin",
                  address_1="99 Other Rd", created_at=NOW - timedelta(hours=1))
        order = add_order(phone="01799999999", created_at=NOW)

        result = make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)
        assert result.signals[SignalKind.NAME_SIMILARITY] == 18

    def test_reputation_from_cancellations(self, store, history, add_order):
        add_order(status="cancelled", created_at=NOW - timedelta(days=10))
        order = add_order(created_at=NOW)

        result = make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)
        assert result.signals == {SignalKind.REPUTATION: 20}
        assert result.score == 20

    def test_score_is_clamped_to_100(self, store, history, add_order):
        phone = "01911111111"
        add_order(phone=phone, created_at=NOW - timedelta(hours=2))
        add_order(phone="01722222222", first_name="Rahim", last_name="Udin",
                  created_at=NOW - timedelta(hours=1))
        add_order(phone="01733333333", created_at=NOW - timedelta(hours=1))
        add_order(phone="01744444444", created_at=NOW - timedelta(hours=1))
        add_order(phone=phone, status="cancelled", created_at=NOW - timedelta(days=5))
        order = add_order(phone=phone, created_at=NOW)
        BlocklistMatcher(store).add(IdentifierType.PHONE, phone)

        result = make_aggregator(store, history, max_orders_per_address=1).get_score(
            phone, order.id, now=NOW
        )
        assert sum(result.signals.values()) > 100
        assert result.score == 100
        assert result.risk_tier == RiskTier.HIGH

    def test_without_order_uses_latest_for_phone(self, store, history, add_order):
        add_order(created_at=NOW - timedelta(hours=3))
        latest = add_order(created_at=NOW)
        make_aggregator(store, history).get_score("+880 1712-345678", now=NOW)
        assert history.get_order(latest.id).fraud_score == 15

    def test_phone_with_no_orders_still_scores(self, store, history):
        result = make_aggregator(store, history).get_score("01300000000", now=NOW)
        assert result.score == 0


class TestErrors:

    def test_invalid_phone_raises(self, store, history):
        with pytest.raises(InvalidIdentifier):
            make_aggregator(store, history).get_score("n/a", now=NOW)

    def test_unknown_order_raises(self, store, history):
        with pytest.raises(OrderNotFound):
            make_aggregator(store, history).get_score("01712345678", order_id=999, now=NOW)

    def test_unavailable_reputation_counts_as_zero(self, store, history, add_order, caplog):
        def broken_reputation(phone):
            raise SignalUnavailable("courier", "timeout")

        add_order(created_at=NOW - timedelta(hours=3))
        order = add_order(created_at=NOW)
        aggregator = FraudScoreAggregator(store, history, GuardSettings(), reputation=broken_reputation)

        with caplog.at_level(logging.WARNING):
            result = aggregator.get_score(order.phone, order.id, now=NOW)

        assert result.score == 15
        assert SignalKind.REPUTATION not in result.signals
        assert "Partial fraud score" in caplog.text

    def test_reputation_timeout_counts_as_zero(self, store, history, add_order, caplog):
        def timing_out(phone):
            raise TimeoutError("courier api timed out")

        order = add_order(created_at=NOW)
        aggregator = FraudScoreAggregator(store, history, GuardSettings(), reputation=timing_out)

        with caplog.at_level(logging.WARNING):
            result = aggregator.get_score(order.phone, order.id, now=NOW)

        assert result.score == 0
        assert result.cached is False
        assert "courier api timed out" in caplog.text
        assert store.get_score(order.phone) is not None

    def test_non_finite_reputation_counts_as_zero(self, store, history, add_order):
        order = add_order(created_at=NOW)
        aggregator = FraudScoreAggregator(
            store, history, GuardSettings(), reputation=lambda phone: float("nan")
        )
        result = aggregator.get_score(order.phone, order.id, now=NOW)
        assert result.score == 0
        assert SignalKind.REPUTATION not in result.signals


class TestCache:

    def test_second_read_is_cached_and_identical(self, store, history, add_order):
        order = add_order()
        aggregator = make_aggregator(store, history)
        first = aggregator.get_score(order.phone, order.id, now=NOW)
        second = aggregator.get_score(order.phone, order.id, now=NOW + timedelta(seconds=5))

        assert second.cached is True
        assert second.score == first.score
        assert second.computed_at == first.computed_at

    def test_force_refresh_recomputes(self, store, history, add_order):
        order = add_order()
        aggregator = make_aggregator(store, history)
        aggregator.get_score(order.phone, order.id, now=NOW)
        refreshed = aggregator.get_score(
            order.phone, order.id, force_refresh=True, now=NOW + timedelta(minutes=1)
        )
        assert refreshed.cached is False
        assert refreshed.computed_at == NOW + timedelta(minutes=1)
        assert store.get_score(order.phone).computed_at == NOW + timedelta(minutes=1)

    def test_stale_entry_is_recomputed(self, store, history, add_order):
        order = add_order()
        aggregator = make_aggregator(store, history, cache_ttl_seconds=60)
        aggregator.get_score(order.phone, order.id, now=NOW)
        later = aggregator.get_score(order.phone, order.id, now=NOW + timedelta(seconds=60))
        assert later.cached is False

    def test_new_evidence_shows_after_refresh(self, store, history, add_order):
        order = add_order()
        aggregator = make_aggregator(store, history)
        assert aggregator.get_score(order.phone, order.id, now=NOW).score == 0

        BlocklistMatcher(store).add(IdentifierType.PHONE, order.phone)
        assert aggregator.get_score(order.phone, order.id, now=NOW).score == 0
        assert aggregator.get_score(order.phone, order.id, force_refresh=True, now=NOW).score == 75

    def test_score_saved_on_order(self, store, history, add_order):
        order = add_order()
        BlocklistMatcher(store).add(IdentifierType.IP, order.ip)
        make_aggregator(store, history).get_score(order.phone, order.id, now=NOW)

        saved = history.get_order(order.id)
        assert saved.fraud_score == 75
        assert saved.risk_tier == "high"


class TestBatchRecompute:

    def _add_distinct(self, add_order, count):
        return [
            add_order(phone=f"0171{i:07d}", created_at=NOW - timedelta(days=i + 1))
            for i in range(count)
        ]

    def test_three_chunks_for_25_orders(self, store, history, add_order):
        self._add_distinct(add_order, 25)
        aggregator = make_aggregator(store, history)

        offsets = []
        state = None
        offset = 0
        while True:
            offsets.append(offset)
            state = aggregator.run_batch(offset, BatchMode.ALL, 10, state=state, now=NOW)
            if state.completed:
                break
            offset = state.offset

        assert offsets == [0, 10, 20]
        assert state.total_processed == 25
        assert state.total_updated == 25
        assert state.total_failed == 0
        assert state.completed is True

    def test_chunk_states_progress(self, store, history, add_order):
        self._add_distinct(add_order, 25)
        aggregator = make_aggregator(store, history)

        first = aggregator.run_batch(0, BatchMode.ALL, 10, now=NOW)
        assert (first.offset, first.total_processed, first.completed) == (10, 10, False)
        second = aggregator.run_batch(first.offset, BatchMode.ALL, 10, state=first, now=NOW)
        assert (second.offset, second.total_processed, second.completed) == (20, 20, False)

    def test_exact_multiple_completes_on_last_full_chunk(self, store, history, add_order):
        self._add_distinct(add_order, 20)
        aggregator = make_aggregator(store, history)
        first = aggregator.run_batch(0, BatchMode.ALL, 10, now=NOW)
        second = aggregator.run_batch(10, BatchMode.ALL, 10, state=first, now=NOW)
        assert second.completed is True
        assert second.total_processed == 20

    def test_missing_only_skips_fresh_scores(self, store, history, add_order):
        orders = self._add_distinct(add_order, 6)
        aggregator = make_aggregator(store, history)
        for order in orders[:4]:
            aggregator.get_score(order.phone, order.id, now=NOW)

        state = aggregator.run_batch(0, BatchMode.MISSING_ONLY, 10, now=NOW + timedelta(minutes=1))
        assert state.total_skipped == 4
        assert state.total_updated == 2
        assert state.total_processed == 6
        assert state.completed is True

    def test_all_mode_rescores_fresh_scores(self, store, history, add_order):
        orders = self._add_distinct(add_order, 3)
        aggregator = make_aggregator(store, history)
        for order in orders:
            aggregator.get_score(order.phone, order.id, now=NOW)

        state = aggregator.run_batch(0, BatchMode.ALL, 10, now=NOW + timedelta(minutes=1))
        assert state.total_updated == 3
        assert state.total_skipped == 0

    def test_bad_order_is_counted_and_skipped(self, store, history, add_order):
        self._add_distinct(add_order, 2)
        add_order(phone="n/a")
        self._add_distinct(add_order, 1)

        state = make_aggregator(store, history).run_batch(0, BatchMode.ALL, 10, now=NOW)
        assert state.total_failed == 1
        assert state.total_updated == 3
        assert state.total_processed == 4
        assert state.completed is True

    def test_unexpected_error_fails_one_order_not_the_chunk(self, store, history, add_order):
        orders = self._add_distinct(add_order, 3)
        broken_id = orders[1].id

        class FlakyAggregator(FraudScoreAggregator):
            def compute(self, phone, order, now):
                if order is not None and order.id == broken_id:
                    raise RuntimeError("score store went away")
                return super().compute(phone, order, now)

        aggregator = FlakyAggregator(store, history, GuardSettings())
        state = aggregator.run_batch(0, BatchMode.ALL, 10, now=NOW)
        assert state.total_failed == 1
        assert state.total_updated == 2
        assert state.total_processed == 3
        assert state.completed is True

    def test_unreachable_reputation_does_not_abort_batch(self, store, history, add_order):
        self._add_distinct(add_order, 3)
        calls = []

        def down_once(phone):
            calls.append(phone)
            if len(calls) == 1:
                raise ConnectionError("down")
            return 0.0

        aggregator = FraudScoreAggregator(store, history, GuardSettings(), reputation=down_once)
        state = aggregator.run_batch(0, BatchMode.ALL, 10, now=NOW)
        assert state.total_failed == 0
        assert state.total_updated == 3
        assert state.total_processed == 3

    def test_empty_history_completes_immediately(self, store, history):
        state = make_aggregator(store, history).run_batch(0, BatchMode.ALL, 10, now=NOW)
        assert state.completed is True
        assert state.total_processed == 0
