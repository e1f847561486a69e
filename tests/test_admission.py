# ─────────────────────────────────────────────────────────────────────────────
# Tests: AdmissionController, TokenBucket, visitor sweep
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from ipscope.services.admission import AdmissionController, TokenBucket, sweep_forever

# ── Token bucket ─────────────────────────────────────────────────────────────


class TestTokenBucket:
    def test_starts_full(self):
        bucket = TokenBucket(rate=1.0, burst=10, now=0.0)
        assert bucket.tokens(0.0) == 10.0

    def test_denies_when_empty(self):
        bucket = TokenBucket(rate=1.0, burst=2, now=0.0)
        assert bucket.allow(0.0)
        assert bucket.allow(0.0)
        assert not bucket.allow(0.0)

    def test_refill_is_capped_at_burst(self):
        bucket = TokenBucket(rate=1.0, burst=10, now=0.0)
        for _ in range(10):
            bucket.allow(0.0)
        assert bucket.tokens(3_600.0) == 10.0

    def test_partial_refill_does_not_admit(self):
        bucket = TokenBucket(rate=1.0, burst=1, now=0.0)
        assert bucket.allow(0.0)
        assert not bucket.allow(0.5)
        assert bucket.allow(1.0)

    def test_clock_going_backwards_never_adds_tokens(self):
        bucket = TokenBucket(rate=1.0, burst=1, now=10.0)
        assert bucket.allow(10.0)
        assert not bucket.allow(5.0)
        assert bucket.tokens(5.0) == 0.0


# ── Controller ───────────────────────────────────────────────────────────────


class TestAllow:
    def test_first_ten_pass_eleventh_denied(self, admission: AdmissionController):
        results = [admission.allow("203.0.113.5") for _ in range(11)]
        assert results == [True] * 10 + [False]

    def test_one_more_after_one_second(self, admission: AdmissionController, clock):
        for _ in range(10):
            assert admission.allow("k")
        assert not admission.allow("k")

        clock.advance(1.0)
        assert admission.allow("k")
        assert not admission.allow("k")

    def test_keys_have_independent_budgets(self, admission: AdmissionController):
        for _ in range(10):
            admission.allow("a")
        assert not admission.allow("a")
        assert admission.allow("b")

    def test_entry_created_lazily(self, admission: AdmissionController):
        assert "k" not in admission
        assert len(admission) == 0
        admission.allow("k")
        assert "k" in admission
        assert len(admission) == 1

    def test_denied_call_still_refreshes_last_seen(self, admission: AdmissionController, clock):
        """A client hammering while denied is still active, not idle."""
        for _ in range(11):
            admission.allow("k")
        clock.advance(500)
        admission.allow("k")
        clock.advance(500)
        assert admission.sweep() == 0
        assert "k" in admission

    def test_retry_after_is_one_token(self, clock):
        assert AdmissionController(rate=1.0, clock=clock).retry_after_seconds == 1.0
        assert AdmissionController(rate=4.0, clock=clock).retry_after_seconds == 0.25

    def test_concurrent_callers_share_one_burst(self, admission: AdmissionController):
        """Under a frozen clock exactly `burst` of many parallel calls succeed."""
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: admission.allow("nat"), range(200)))
        assert results.count(True) == 10
        assert len(admission) == 1


# ── Sweep ────────────────────────────────────────────────────────────────────


class TestSweep:
    def test_idle_entry_removed(self, admission: AdmissionController, clock):
        admission.allow("old")
        clock.advance(601)
        assert admission.sweep() == 1
        assert "old" not in admission

    def test_entry_at_threshold_kept(self, admission: AdmissionController, clock):
        admission.allow("k")
        clock.advance(600)
        assert admission.sweep() == 0

    def test_only_idle_entries_removed(self, admission: AdmissionController, clock):
        admission.allow("old")
        clock.advance(400)
        admission.allow("recent")
        clock.advance(300)
        assert admission.sweep() == 1
        assert "old" not in admission
        assert "recent" in admission

    def test_evicted_key_gets_fresh_burst(self, admission: AdmissionController, clock):
        for _ in range(10):
            admission.allow("k")
        assert not admission.allow("k")

        clock.advance(601)
        admission.sweep()

        results = [admission.allow("k") for _ in range(11)]
        assert results == [True] * 10 + [False]


class TestSweepForever:
    async def test_sweeps_until_cancelled(self, admission: AdmissionController, clock):
        admission.allow("old")
        clock.advance(601)
        evicted: list[int] = []

        task = asyncio.create_task(
            sweep_forever(admission, interval_seconds=0.01, on_sweep=evicted.append)
        )
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "old" not in admission
        assert sum(evicted) == 1

    async def test_waits_one_interval_before_first_sweep(self, admission: AdmissionController, clock):
        admission.allow("old")
        clock.advance(601)

        task = asyncio.create_task(sweep_forever(admission, interval_seconds=60))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "old" in admission
