"""
Server-sent event registry.

Keeps, per user id, the queues feeding that user's open event streams. The
registry lives in process memory only: it is not shared between workers and
is empty after a restart, which is fine because notifications are also
persisted and can be polled.
"""
import asyncio
import json
import logging
import threading
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

Connection = Tuple[asyncio.AbstractEventLoop, asyncio.Queue]


def format_event(data: Any) -> str:
    return f"data: {json.dumps(data, default=str, ensure_ascii=False)}\n\n"


class SseManager:
    def __init__(self):
        self._clients: Dict[int, List[Connection]] = {}
        # sync route handlers run in worker threads
        self._lock = threading.Lock()

    def add_client(self, user_id: int, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop = None):
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            connections = self._clients.setdefault(user_id, [])
            connections.append((loop, queue))
            total = len(connections)
        logger.info("SSE client added for user %s (%d open)", user_id, total)

    def remove_client(self, user_id: int, queue: asyncio.Queue):
        with self._lock:
            connections = self._clients.get(user_id)
            if not connections:
                return
            remaining = [conn for conn in connections if conn[1] is not queue]
            if remaining:
                self._clients[user_id] = remaining
            else:
                del self._clients[user_id]
        logger.info("SSE client removed for user %s (%d open)", user_id, len(remaining))

    def connection_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._clients.get(user_id, []))

    def send_notification(self, user_id: int, data: Any) -> int:
        """Queue one event for every open stream of the user.

        Returns how many streams the event was handed to. A stream whose loop
        is gone is logged and skipped; nothing is retried.
        """
        with self._lock:
            connections = list(self._clients.get(user_id, []))
        if not connections:
            return 0
        message = format_event(data)
        delivered = 0
        for loop, queue in connections:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, message)
                delivered += 1
            except RuntimeError:
                logger.warning("SSE push to user %s failed: event loop closed", user_id)
        logger.debug("SSE notification sent to user %s on %d stream(s)", user_id, delivered)
        return delivered


sse_manager = SseManager()
