import threading
from queue import Queue, Empty
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class InMemoryQueue(Generic[T]):
    """
    Thread-safe FIFO message queue with Dead Letter Queue support.
    All synchronization is internal - callers never need to lock.
    """

    DEFAULT_TIMEOUT = 0.1

    def __init__(self, name: str = "queue", timeout: float = DEFAULT_TIMEOUT):
        self.name = name
        self._timeout = timeout
        self._main_queue: Queue[T] = Queue()
        self._dead_letter_queue: Queue[T] = Queue()
        self._shutdown_event = threading.Event()

    def publish_message(self, message: T) -> None:
        """Add message to main queue. Thread-safe."""
        self._main_queue.put(message)

    def consume_message(self) -> Optional[T]:
        """
        Get next message from main queue.
        Returns None if queue is empty after timeout.
        """
        try:
            return self._main_queue.get(timeout=self._timeout)
        except Empty:
            return None

    def is_empty(self) -> bool:
        return self._main_queue.empty()

    def send_to_dead_letter_queue(self, message: T) -> None:
        """Park a message that could not be applied. Thread-safe."""
        self._dead_letter_queue.put(message)

    def get_dead_letter_queue_messages(self) -> List[T]:
        """
        Drain all messages from dead letter queue and return as list.
        Called after main processing is complete.
        """
        messages = []
        while True:
            try:
                messages.append(self._dead_letter_queue.get_nowait())
            except Empty:
                break
        return messages

    def get_dead_letter_queue_size(self) -> int:
        """Return approximate dead letter queue size."""
        return self._dead_letter_queue.qsize()

    def shutdown(self) -> None:
        """Signal no more messages will be published."""
        self._shutdown_event.set()

    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()
