"""Unit tests for the credential pool."""
import threading

import pytest

from symptom_assessor.domain.errors import ConfigurationError
from symptom_assessor.infrastructure.credentials import CredentialPool


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


KEYS = ["key-one", "key-two", "key-three"]


class TestCredentialPool:
    def test_empty_pool_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            CredentialPool([])

    def test_credential_is_reused_up_to_the_limit_then_rotates(self):
        pool = CredentialPool(KEYS, usage_limit=3, clock=FakeClock())
        picks = [pool.acquire() for _ in range(7)]
        assert picks == ["key-one"] * 3 + ["key-two"] * 3 + ["key-three"]

    @pytest.mark.parametrize("acquisitions", [1, 4, 8, 9])
    def test_use_count_never_exceeds_limit_within_cooldown(self, acquisitions):
        pool = CredentialPool(KEYS, usage_limit=3, cooldown_seconds=6.0, clock=FakeClock())
        for _ in range(acquisitions):
            pool.acquire()
        assert all(pool.usage(key).use_count <= 3 for key in KEYS)
        assert sum(pool.usage(key).use_count for key in KEYS) == acquisitions

    def test_acquire_never_raises_when_every_credential_is_exhausted(self):
        clock = FakeClock()
        pool = CredentialPool(KEYS, usage_limit=3, clock=clock)
        for i in range(9):
            clock.now += 0.1
            pool.acquire()
        # All three at the limit and inside the cooldown window
        clock.now += 0.1
        picked = pool.acquire()
        assert picked == "key-one"  # least recently used
        assert pool.usage("key-one").use_count == 1

    def test_cooldown_resets_exhausted_credentials(self):
        clock = FakeClock()
        pool = CredentialPool(KEYS, usage_limit=3, cooldown_seconds=6.0, clock=clock)
        for _ in range(9):
            pool.acquire()
        assert all(pool.usage(key).use_count == 3 for key in KEYS)

        clock.now += 7.0
        picks = [pool.acquire() for _ in range(3)]
        assert len(picks) == 3
        assert all(pool.usage(key).use_count <= 3 for key in KEYS)

    def test_acquire_records_last_used_time(self):
        clock = FakeClock(now=42.0)
        pool = CredentialPool(KEYS, clock=clock)
        key = pool.acquire()
        assert pool.usage(key).last_used_at == 42.0

    def test_duplicate_credentials_are_collapsed(self):
        pool = CredentialPool(["same", "same", "other"])
        assert len(pool) == 2

    def test_concurrent_acquisitions_do_not_double_count(self):
        pool = CredentialPool(KEYS, usage_limit=3, cooldown_seconds=60.0)
        picks = []
        lock = threading.Lock()

        def worker():
            key = pool.acquire()
            with lock:
                picks.append(key)

        threads = [threading.Thread(target=worker) for _ in range(9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(picks) == sorted(KEYS * 3)
        assert all(pool.usage(key).use_count == 3 for key in KEYS)
