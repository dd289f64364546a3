from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Optional

from .rpc import ChainClient

logger = logging.getLogger(__name__)

FilterBuilder = Callable[[int, int], Dict[str, Any]]


class LogSubscription:
    """
    Polling log subscription.

    A background thread follows the chain head with ``eth_getLogs`` starting at
    ``start_block`` and pushes decoded events onto ``events``. The first error
    stops the thread and is kept in ``error`` for the consumer.
    """

    def __init__(
        self,
        client: ChainClient,
        build_filter: FilterBuilder,
        decode: Callable[[Dict[str, Any]], Any],
        start_block: int = 0,
        poll_interval: float = 0.5,
    ) -> None:
        self.client = client
        self.build_filter = build_filter
        self.decode = decode
        self.poll_interval = poll_interval
        self.events: "queue.Queue[Any]" = queue.Queue()
        self.error: Optional[BaseException] = None
        self.failed = threading.Event()
        self._next_block = start_block
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="log-subscription", daemon=True)
        self._thread.start()

    def _poll(self) -> None:
        head = self.client.block_number()
        if head < self._next_block:
            return
        for log in self.client.get_logs(self.build_filter(self._next_block, head)):
            self.events.put(self.decode(log))
        self._next_block = head + 1

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self._poll()
            except Exception as exc:
                logger.debug("log subscription failed: %s", exc)
                self.error = exc
                self.failed.set()
                return
            self._stop.wait(self.poll_interval)

    def unsubscribe(self) -> None:
        self._stop.set()
        self._thread.join(timeout=self.poll_interval + self.client.timeout)

    def __enter__(self) -> "LogSubscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()
