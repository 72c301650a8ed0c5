import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from app.correlator import TriggerCorrelator
from domain.models import AlarmContext
from factories import crossing, delivery
from infra.clock import ManualClock

GROUP = "Speed:cam-1,cam-2"


class TestSingleTriggerMatching:

    def test_first_trigger_is_stored(self, correlator):
        assert correlator.submit(delivery(crossing(1000, "A"))) is None

        stats = correlator.stats()
        assert stats.pending_count == 1
        assert stats.groups == {GROUP: 1}

    def test_matches_in_either_arrival_order(self, clock):
        a = crossing(1000, "A", device="cam-1")
        b = crossing(1500, "B", device="cam-2")

        results = []
        for first, second in ((a, b), (b, a)):
            c = TriggerCorrelator(clock=clock, match_window_sec=30)
            assert c.submit(delivery(first)) is None
            pair = c.submit(delivery(second))
            results.append((pair.first, pair.second))
            assert c.stats().pending_count == 0

        assert results[0] == results[1] == (a, b)

    def test_match_removes_pending_and_reports_source(self, correlator):
        correlator.submit(delivery(crossing(1000, "A")))
        pair = correlator.submit(delivery(crossing(1400, "B")))

        assert pair.source == "pending"
        assert pair.group_key == GROUP
        assert correlator.stats().pending_count == 0

    def test_same_event_twice_never_matches_itself(self, correlator):
        ev = crossing(1000, "A", event_id="dup")

        assert correlator.submit(delivery(ev)) is None
        assert correlator.submit(delivery(ev)) is None
        assert correlator.stats().pending_count == 1
        assert correlator.pending_keys() == [ev.trigger_key]

    def test_same_line_events_never_match(self, correlator):
        assert correlator.submit(delivery(crossing(1000, "A"))) is None
        assert correlator.submit(delivery(crossing(1200, "A"))) is None
        assert correlator.stats().pending_count == 2

    def test_different_line_matches_first_stored_pending(self, correlator):
        p1 = crossing(1000, "A", event_id="p1")
        p2 = crossing(1100, "A", event_id="p2")
        correlator.submit(delivery(p1))
        correlator.submit(delivery(p2))

        pair = correlator.submit(delivery(crossing(1500, "B")))

        assert pair.first == p1
        assert correlator.pending_keys() == [p2.trigger_key]

    def test_different_groups_do_not_match(self, correlator):
        correlator.submit(delivery(crossing(1000, "A"), name="North"))
        assert correlator.submit(delivery(crossing(1500, "B"), name="South")) is None

        stats = correlator.stats()
        assert stats.pending_count == 2
        assert stats.groups == {"North:cam-1,cam-2": 1, "South:cam-1,cam-2": 1}

    def test_group_ignores_source_order(self, correlator):
        correlator.submit(delivery(crossing(1000, "A"), sources=("cam-2", "cam-1")))
        pair = correlator.submit(delivery(crossing(1500, "B"), sources=("cam-1", "cam-2")))
        assert pair is not None

    def test_missing_line_counts_as_its_own_line(self, correlator):
        correlator.submit(delivery(crossing(1000, None)))
        assert correlator.submit(delivery(crossing(1100, None))) is None
        assert correlator.submit(delivery(crossing(1300, "A"))) is not None

    def test_overlapping_vehicles_can_cross_pair(self, correlator):
        # limitação conhecida: primeiro pendente do grupo, sem desambiguação por veículo
        v1_a = crossing(1000, "A", event_id="v1-a")
        v2_a = crossing(1100, "A", event_id="v2-a")
        v2_b = crossing(1500, "B", event_id="v2-b")
        correlator.submit(delivery(v1_a))
        correlator.submit(delivery(v2_a))

        pair = correlator.submit(delivery(v2_b))

        assert (pair.first, pair.second) == (v1_a, v2_b)


class TestBatchDelivery:

    def test_two_crossings_in_one_delivery_match_directly(self, correlator):
        pending = crossing(500, "A", event_id="pending")
        correlator.submit(delivery(pending))

        batch = delivery(
            crossing(2100, None, key="motion"),
            crossing(2200, "B"),
            crossing(2000, "A"),
        )
        pair = correlator.submit(batch)

        assert pair.source == "batch"
        assert (pair.first.timestamp, pair.second.timestamp) == (2000, 2200)
        assert correlator.pending_keys() == [pending.trigger_key]

    def test_batch_returns_earliest_two(self, correlator):
        pair = correlator.submit(delivery(crossing(3000, "A"), crossing(1000, "B"), crossing(2000, "A")))
        assert (pair.first.timestamp, pair.second.timestamp) == (1000, 2000)
        assert correlator.stats().pending_count == 0

    def test_single_candidate_among_noise_goes_to_table(self, correlator):
        d = delivery(crossing(1000, "A"), crossing(None, "B"), crossing(1100, "B", key="motion"))
        assert correlator.submit(d) is None
        assert correlator.stats().pending_count == 1

    def test_no_candidates_changes_nothing(self, correlator):
        correlator.submit(delivery(crossing(1000, "A")))
        before = correlator.pending_keys()

        assert correlator.submit(delivery()) is None
        assert correlator.submit(delivery(crossing(None, "B"), crossing(1200, "B", key="motion"))) is None

        assert correlator.pending_keys() == before


class TestExpiry:

    def test_pending_older_than_window_is_unmatchable(self, correlator, clock):
        a = crossing(1000, "A")
        b = crossing(31_001, "B")
        correlator.submit(delivery(a))

        clock.advance(31)
        assert correlator.submit(delivery(b)) is None

        assert correlator.pending_keys() == [b.trigger_key]
        assert correlator.stats().groups == {GROUP: 1}

    def test_pending_at_exactly_window_still_matches(self, correlator, clock):
        correlator.submit(delivery(crossing(1000, "A")))
        clock.advance(30)
        assert correlator.submit(delivery(crossing(2000, "B"))) is not None

    def test_sweep_evicts_only_expired(self, correlator, clock):
        old = crossing(1000, "A", event_id="old")
        correlator.submit(delivery(old))
        clock.advance(20)
        fresh = crossing(2000, "A", event_id="fresh")
        correlator.submit(delivery(fresh))
        clock.advance(15)

        evicted = correlator.sweep()

        assert [r.trigger_key for r in evicted] == [old.trigger_key]
        assert correlator.pending_keys() == [fresh.trigger_key]

    def test_stats_never_mutates_table(self, correlator, clock):
        correlator.submit(delivery(crossing(1000, "A")))
        correlator.submit(delivery(crossing(1000, "A", event_id="other"), name="Other"))
        clock.advance(120)

        first = correlator.stats()
        second = correlator.stats()

        assert first == second
        assert first.pending_count == 2
        assert len(correlator.pending_keys()) == 2

    def test_stats_to_dict(self, correlator):
        correlator.submit(delivery(crossing(1000, "A")))
        assert correlator.stats().to_dict() == {"pending_count": 1, "groups": {GROUP: 1}}


class TestConcurrency:

    def test_only_one_concurrent_submit_claims_a_pending(self):
        c = TriggerCorrelator(clock=ManualClock(0.0), match_window_sec=30)
        c.submit(delivery(crossing(1000, "A", event_id="lonely")))

        n = 20
        barrier = threading.Barrier(n)

        def worker(i):
            barrier.wait()
            return c.submit(delivery(crossing(2000 + i, "B", event_id=f"b-{i}")))

        with ThreadPoolExecutor(max_workers=n) as pool:
            results = list(pool.map(worker, range(n)))

        matched = [r for r in results if r is not None]
        assert len(matched) == 1
        assert matched[0].first.event_id == "lonely"
        assert c.stats().pending_count == n - 1

    def test_interleaved_groups_each_match_once(self):
        c = TriggerCorrelator(clock=ManualClock(0.0), match_window_sec=30)
        groups = 50

        def events():
            for g in range(groups):
                yield g, crossing(1000, "A", event_id=f"{g}-a")
                yield g, crossing(1500, "B", event_id=f"{g}-b")

        def worker(item):
            g, ev = item
            d = delivery(ev, name=f"alarm-{g}")
            return c.submit(d)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(worker, events()))

        matched = [r for r in results if r is not None]
        assert len(matched) == groups
        assert len({p.group_key for p in matched}) == groups
        assert c.stats().pending_count == 0

    def test_sweep_racing_submit_evicts_stale_pending_once(self, caplog):
        caplog.set_level(logging.INFO, logger="app.correlator")
        n = 8

        for round_ in range(50):
            caplog.clear()
            clock = ManualClock(0.0)
            c = TriggerCorrelator(clock=clock, match_window_sec=30)
            stale = crossing(1000, "A", event_id=f"stale-{round_}")
            c.submit(delivery(stale))
            clock.advance(31)

            barrier = threading.Barrier(n)

            def worker(i):
                barrier.wait()
                if i % 2:
                    return c.sweep()
                return c.submit(delivery(crossing(40_000 + i, "B", event_id=f"b-{i}")))

            with ThreadPoolExecutor(max_workers=n) as pool:
                results = list(pool.map(worker, range(n)))

            pairs = [r for i, r in enumerate(results) if i % 2 == 0 and r is not None]
            swept = [rec for i, r in enumerate(results) if i % 2 for rec in r]
            evictions = [
                r for r in caplog.records
                if "evicted unmatched" in r.getMessage() and stale.trigger_key in r.getMessage()
            ]

            assert pairs == []
            assert len(swept) <= 1
            assert len(evictions) == 1
            assert stale.trigger_key not in c.pending_keys()
            assert c.stats().pending_count == n // 2


def test_alarm_context_group_key_sorts_sources():
    assert AlarmContext(name="Speed", sources=("b", "a", "c")).group_key == "Speed:a,b,c"
    assert AlarmContext(name="Speed").group_key == "Speed:"
