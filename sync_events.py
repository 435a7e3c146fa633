"""
Notification channel from the sync engine to its subscribers.

Two kinds of subscriber: bounded queues (one per connected server-sent
events client) and in-process callbacks.
"""

import json
import logging
import queue
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

ORDER_NEW = 'order_new'
ORDER_UPDATED = 'order_updated'
ORDER_CANCELLED = 'order_cancelled'
ACTION_UNCONFIRMED = 'action_unconfirmed'
SYNC_STATUS = 'sync_status'
AUTH_STATUS = 'auth_status'


def format_sse(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


class SyncNotifier:
    """Fan-out of engine events to SSE client queues and callbacks"""

    def __init__(self, queue_size: int = 50):
        self._queue_size = queue_size
        self._clients: List[queue.Queue] = []
        self._callbacks: List[Callable[[str, Dict], None]] = []
        self._lock = threading.Lock()

    def register(self) -> queue.Queue:
        """Register a new SSE client, returns a queue for that client"""
        q = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._clients.append(q)
        return q

    def unregister(self, q: queue.Queue):
        with self._lock:
            if q in self._clients:
                self._clients.remove(q)

    def subscribe(self, callback: Callable[[str, Dict], None]):
        with self._lock:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[str, Dict], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def publish(self, event_type: str, data: Dict):
        message = format_sse(event_type, data)
        with self._lock:
            dead_clients = []
            for q in self._clients:
                try:
                    q.put_nowait(message)
                except queue.Full:
                    dead_clients.append(q)
            for q in dead_clients:
                self._clients.remove(q)
            callbacks = list(self._callbacks)
        if dead_clients:
            logger.info('Dropped %d slow SSE client(s)', len(dead_clients))

        for callback in callbacks:
            try:
                callback(event_type, data)
            except Exception:
                # one faulty subscriber must not stop the sync loop
                logger.exception('Notification callback failed for %s', event_type)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)
