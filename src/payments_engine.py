import logging
import threading
from pathlib import Path
from typing import Iterable, List, Union

from csv_io import DEFAULT_AMOUNT_SCALE, read_events
from ledger_store import LedgerStore
from message_queue import InMemoryQueue
from models import AccountSnapshot, Event, ProcessingStats
from transaction_engine import TransactionEngine

logger = logging.getLogger(__name__)


class PaymentsEngine:
    """
    Runs the transaction engine with one publisher and N consumer threads.

    Events are sharded by client id, one queue per consumer, so every event of a
    client is applied by the same thread in stream order while different clients
    proceed in parallel. Events for accounts halted by an invariant violation are
    parked on the shard's dead letter queue and reported at the end.

    Transaction ids are unique across all clients but shards run independently.
    When two clients reuse one id, the shard that records it first wins and the
    other is rejected as a duplicate, so which one is applied depends on thread
    scheduling. The sequential TransactionEngine.process always keeps the earlier
    one in stream order.
    """

    def __init__(self, num_workers: int = 4):
        if num_workers < 1:
            raise ValueError(f"num_workers must be at least 1, got {num_workers}")
        self._num_workers = num_workers
        self._store = LedgerStore()
        self._engine = TransactionEngine(self._store)
        self._errors_lock = threading.Lock()
        self._errors: List[Exception] = []
        self._failed = threading.Event()

    @property
    def stats(self) -> ProcessingStats:
        return self._engine.stats

    @property
    def engine(self) -> TransactionEngine:
        return self._engine

    def process_file(
        self, filepath: Union[str, Path], amount_scale: int = DEFAULT_AMOUNT_SCALE
    ) -> List[AccountSnapshot]:
        """Process a CSV file and return final account states."""
        with open(filepath, "r", newline="") as f:
            return self.process_events(read_events(f, amount_scale=amount_scale))

    def process_events(self, events: Iterable[Event]) -> List[AccountSnapshot]:
        """
        Publish events to the shards, wait for the consumers and return final account states.

        Every call runs on fresh queues and consumer threads against the same ledger,
        so balances carry over between calls.

        Raises:
            Exception: the first unexpected error raised by a consumer, after all
                consumers have stopped. Processing stops at the first such error.
        """
        logger.info(f"Starting processing with {self._num_workers} workers")

        queues: List[InMemoryQueue[Event]] = [
            InMemoryQueue(name=f"shard-{index}") for index in range(self._num_workers)
        ]
        self._errors = []
        self._failed.clear()

        consumer_threads = []
        for queue in queues:
            consumer_thread = threading.Thread(
                target=self._consume_events, args=(queue,), name=f"consumer-{queue.name}"
            )
            consumer_thread.start()
            consumer_threads.append(consumer_thread)

        try:
            self._publish_events(queues, events)
        finally:
            for queue in queues:
                queue.shutdown()
            for consumer_thread in consumer_threads:
                consumer_thread.join()

        if self._errors:
            raise self._errors[0]

        logger.info("Processing complete")

        self._report_dead_letters(queues)
        return self._engine.snapshot()

    def _publish_events(self, queues: List[InMemoryQueue[Event]], events: Iterable[Event]) -> None:
        for event in events:
            if self._failed.is_set():
                break
            queues[event.client_id % self._num_workers].publish_message(event)

    def _consume_events(self, queue: InMemoryQueue[Event]) -> None:
        """Consumer loop: pull from the shard, apply under the account lock, park halted events."""
        while not self._failed.is_set():
            event = queue.consume_message()
            if event is None:
                if queue.is_shutdown() and queue.is_empty():
                    break
                continue

            try:
                with self._store.get_client_lock(event.client_id):
                    outcome = self._engine.process_event(event)
            except Exception as e:
                logger.exception(f"{event}: processing failed, stopping all consumers")
                with self._errors_lock:
                    self._errors.append(e)
                self._failed.set()
                break

            if outcome is None:
                queue.send_to_dead_letter_queue(event)

    def _report_dead_letters(self, queues: List[InMemoryQueue[Event]]) -> None:
        dead_letters = []
        for queue in queues:
            dead_letters.extend(queue.get_dead_letter_queue_messages())

        if dead_letters:
            logger.warning(f"{len(dead_letters)} events could not be applied to halted accounts")
            for event in dead_letters:
                logger.warning(f"  Discarding: {event}")
