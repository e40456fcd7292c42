import sys
import os
import threading
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from csv_io import read_events
from models import Deposit
from payments_engine import PaymentsEngine
from transaction_engine import TransactionEngine


def run_sequential(csv_file):
    engine = TransactionEngine()
    with open(csv_file, newline="") as f:
        return engine.process(read_events(f))


def run_concurrent(csv_file):
    return PaymentsEngine(num_workers=2).process_file(str(csv_file))


@pytest.fixture(params=[run_sequential, run_concurrent], ids=["sequential", "concurrent"])
def process(request, tmp_path):
    """Write CSV lines to a file and run them through one of the engines."""

    def _process(lines):
        csv_file = tmp_path / "test.csv"
        csv_file.write_text('\n'.join(["type, client, tx, amount"] + lines))
        snapshots = request.param(csv_file)
        return {snapshot.client_id: snapshot for snapshot in snapshots}

    return _process


class TestPaymentsEngine:
    def test_basic_transactions(self, process):
        accounts = process([
            "deposit, 1, 1, 1.0",
            "deposit, 2, 2, 2.0",
            "deposit, 1, 3, 2.0",
            "withdrawal, 1, 4, 1.5",
            "withdrawal, 2, 5, 3.0",
        ])

        assert 1 in accounts
        assert 2 in accounts

        assert accounts[1].available == Decimal("1.5")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("1.5")

        assert accounts[2].available == Decimal("2.0")
        assert accounts[2].held == Decimal("0")
        assert accounts[2].total == Decimal("2.0")

    def test_dispute_resolve(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].frozen is False

    def test_chargeback(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("0")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("0")
        assert accounts[1].frozen is True

    def test_dispute_before_deposit_ignored(self, process):
        """Stream order is authoritative: a dispute of a not-yet-seen transaction is ignored."""
        accounts = process([
            "dispute, 1, 1,",
            "deposit, 1, 1, 100.0",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")

    def test_insufficient_funds(self, process):
        accounts = process([
            "deposit, 1, 1, 50.0",
            "withdrawal, 1, 2, 100.0",
        ])

        assert accounts[1].available == Decimal("50")
        assert accounts[1].total == Decimal("50")

    def test_decimal_precision(self, process):
        accounts = process([
            "deposit, 1, 1, 1.2345",
            "deposit, 1, 2, 0.0001",
            "withdrawal, 1, 3, 0.2346",
        ])

        # 1.2345 + 0.0001 - 0.2346 = 1.0000
        assert accounts[1].available == Decimal("1.0000")

    def test_amounts_quantized_on_read(self, process):
        accounts = process([
            "deposit, 1, 1, 1.23455",
        ])

        assert accounts[1].available == Decimal("1.2346")

    def test_large_balance_keeps_small_amounts(self, process):
        accounts = process([
            "deposit, 1, 1, 1000000000000000000000000",
            "deposit, 1, 2, 0.0001",
        ])

        assert accounts[1].available == Decimal("1000000000000000000000000.0001")

    def test_dispute_withdrawal_holds_amount(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "withdrawal, 1, 2, 50.0",
            "dispute, 1, 2,",
        ])

        # Deposit 100, withdraw 50, dispute the withdrawal: 50 moves from available to held
        assert accounts[1].available == Decimal("0")
        assert accounts[1].held == Decimal("50")
        assert accounts[1].total == Decimal("50")

    def test_duplicate_dispute_ignored(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "dispute, 1, 1,",
        ])

        assert accounts[1].available == Decimal("0")
        assert accounts[1].held == Decimal("100")

    def test_frozen_account_ignores_operations(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
            "deposit, 1, 2, 50.0",
            "withdrawal, 1, 3, 10.0",
        ])

        assert accounts[1].available == Decimal("0")
        assert accounts[1].total == Decimal("0")
        assert accounts[1].frozen is True

    def test_wrong_client_dispute_ignored(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 2, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[2].total == Decimal("0")

    def test_resolve_without_dispute_ignored(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "resolve, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")

    def test_chargeback_after_resolve_ignored(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].frozen is False

    def test_dispute_after_partial_withdrawal_ignored(self, process):
        """Holding the full deposit would leave available negative."""
        accounts = process([
            "deposit, 1, 1, 100.0",
            "withdrawal, 1, 2, 30.0",
            "dispute, 1, 1,",
        ])

        assert accounts[1].available == Decimal("70")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("70")

    def test_multiple_disputes_same_client(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "deposit, 1, 2, 50.0",
            "dispute, 1, 1,",
            "dispute, 1, 2,",
            "resolve, 1, 1,",
            "chargeback, 1, 2,",
        ])

        # After resolve tx1: available=100, held=50
        # After chargeback tx2: available=100, held=0, total=100, frozen
        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("100")
        assert accounts[1].frozen is True

    def test_redispute_after_resolve_ignored(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].frozen is False

    def test_negative_deposit_rejected(self, process):
        accounts = process([
            "deposit, 1, 1, -100.0",
            "deposit, 1, 2, 50.0",
        ])

        assert accounts[1].available == Decimal("50")
        assert accounts[1].total == Decimal("50")

    def test_zero_deposit_accepted_and_disputable(self, process):
        accounts = process([
            "deposit, 1, 1, 0",
            "deposit, 1, 2, 100.0",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].frozen is True

    def test_negative_withdrawal_rejected(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "withdrawal, 1, 2, -50.0",
        ])

        assert accounts[1].available == Decimal("100")

    def test_duplicate_deposit_rejected(self, process):
        accounts = process([
            "deposit, 1, 1, 100.0",
            "deposit, 1, 1, 100.0",
            "deposit, 1, 1, 100.0",
        ])

        assert accounts[1].available == Decimal("100")

    def test_duplicate_withdrawal_rejected(self, process):
        accounts = process([
            "deposit, 1, 1, 200.0",
            "withdrawal, 1, 2, 50.0",
            "withdrawal, 1, 2, 50.0",
            "withdrawal, 1, 2, 50.0",
        ])

        assert accounts[1].available == Decimal("150")

    def test_malformed_rows_skipped(self, process):
        accounts = process([
            "deposit, 1, 1, 10.0",
            "transfer, 1, 2, 5.0",
            "deposit, 1, 3,",
            "dispute, 1, 1, 10.0",
            "deposit, x, 4, 1.0",
            "withdrawal, 1, 5, 2.5",
        ])

        assert accounts[1].available == Decimal("7.5")
        assert accounts[1].held == Decimal("0")


class TestPaymentsEngineStats:
    def test_stats_after_run(self, tmp_path):
        csv_file = tmp_path / "test.csv"
        csv_file.write_text('\n'.join([
            "type, client, tx, amount",
            "deposit, 1, 1, 10",
            "withdrawal, 1, 2, 20",
            "deposit, 2, 3, -1",
            "dispute, 2, 1,",
        ]))

        engine = PaymentsEngine(num_workers=3)
        engine.process_file(str(csv_file))

        assert engine.stats.applied == 1
        assert engine.stats.ignored == 2
        assert engine.stats.rejected == 1
        assert engine.stats.halted == 0

    def test_requires_at_least_one_worker(self):
        with pytest.raises(ValueError):
            PaymentsEngine(num_workers=0)

    def test_process_events_can_run_twice(self):
        engine = PaymentsEngine(num_workers=2)
        engine.process_events([Deposit(tx_id=1, client_id=1, amount=Decimal("5"))])
        snapshots = engine.process_events([
            Deposit(tx_id=2, client_id=1, amount=Decimal("2")),
            Deposit(tx_id=3, client_id=2, amount=Decimal("1")),
        ])

        assert [(s.client_id, s.available) for s in snapshots] == [
            (1, Decimal("7")),
            (2, Decimal("1")),
        ]
        assert engine.stats.applied == 3


class TestUnexpectedErrors:
    EVENTS = [
        Deposit(tx_id=1, client_id=1, amount=Decimal("5")),
        Deposit(tx_id=2, client_id=2, amount=1.5),
        Deposit(tx_id=3, client_id=3, amount=Decimal("1")),
    ]

    def test_sequential_raises(self):
        engine = TransactionEngine()
        with pytest.raises(TypeError):
            engine.process(self.EVENTS)
        assert engine.store.find_transaction(2) is None

    @pytest.mark.parametrize("num_workers", [1, 3])
    def test_concurrent_raises_after_consumers_stop(self, num_workers):
        engine = PaymentsEngine(num_workers=num_workers)
        with pytest.raises(TypeError):
            engine.process_events(self.EVENTS)
        assert engine.engine.store.find_transaction(2) is None
        assert all(not thread.name.startswith("consumer-") for thread in threading.enumerate())
