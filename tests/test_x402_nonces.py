# tests/test_x402_nonces.py
"""
Unit tests for per-sender nonce sequencing.
"""
import threading
from unittest.mock import MagicMock

import pytest

from stackspay.x402.errors import NonceUnavailable
from stackspay.x402.nonces import NonceSequencer


class TestLease:
    """Test nonce leasing."""

    def test_first_lease_reads_chain(self):
        fetch = MagicMock(return_value=10)
        sequencer = NonceSequencer()
        assert sequencer.lease("ST1", "testnet", fetch) == 10
        fetch.assert_called_once()

    def test_later_leases_increment_locally(self):
        fetch = MagicMock(return_value=10)
        sequencer = NonceSequencer()
        assert [sequencer.lease("ST1", "testnet", fetch) for _ in range(3)] == [10, 11, 12]
        assert fetch.call_count == 1

    def test_senders_are_independent(self):
        sequencer = NonceSequencer()
        assert sequencer.lease("ST1", "testnet", lambda: 5) == 5
        assert sequencer.lease("ST2", "testnet", lambda: 0) == 0
        assert sequencer.lease("ST1", "mainnet", lambda: 40) == 40
        assert sequencer.lease("ST1", "testnet", lambda: 99) == 6

    def test_fetch_failure_records_nothing(self):
        sequencer = NonceSequencer()

        def offline():
            raise NonceUnavailable("chain offline")

        with pytest.raises(NonceUnavailable):
            sequencer.lease("ST1", "testnet", offline)
        assert sequencer.peek("ST1", "testnet") == -1
        assert sequencer.lease("ST1", "testnet", lambda: 3) == 3


class TestResetAndPeek:
    """Test forgetting counters."""

    def test_peek(self):
        sequencer = NonceSequencer()
        assert sequencer.peek("ST1", "testnet") == -1
        sequencer.lease("ST1", "testnet", lambda: 7)
        assert sequencer.peek("ST1", "testnet") == 8

    def test_reset_rereads_chain(self):
        fetch = MagicMock(side_effect=[7, 20])
        sequencer = NonceSequencer()
        sequencer.lease("ST1", "testnet", fetch)
        sequencer.reset("ST1", "testnet")
        assert sequencer.lease("ST1", "testnet", fetch) == 20

    def test_reset_unknown_sender(self):
        NonceSequencer().reset("ST9", "testnet")


class TestConcurrency:
    """Concurrent leases never hand out the same nonce."""

    def test_threads_get_distinct_nonces(self):
        sequencer = NonceSequencer()
        fetch = MagicMock(return_value=100)
        results = []
        results_lock = threading.Lock()

        def worker():
            for _ in range(25):
                nonce = sequencer.lease("ST1", "testnet", fetch)
                with results_lock:
                    results.append(nonce)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == list(range(100, 300))
        assert fetch.call_count == 1
