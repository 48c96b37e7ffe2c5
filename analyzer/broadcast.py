"""Fan-out of captured log entries to connected WebSocket observers."""

import json
import logging
import queue
import threading
import time
from threading import Thread

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 256


class ObserverFeed(Thread):
    """Sender thread owning one observer's bounded outbound queue.

    ``offer`` never blocks: when the observer falls ``max_pending``
    messages behind, new events are dropped for it alone.
    """

    def __init__(self, observer, max_pending=DEFAULT_MAX_PENDING):
        super().__init__(daemon=True)
        self.observer = observer
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._running = True
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def offer(self, message: str) -> bool:
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            self._dropped += 1
            return False
        return True

    def run(self):
        while self._running:
            try:
                message = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                if message is None:
                    break
                if getattr(self.observer, "connected", False):
                    self.observer.send(message)
            except Exception as e:
                # removal is left to the observer's own disconnect handler
                logger.debug("Dropping event for observer %r: %s", self.observer, e)
            finally:
                self._queue.task_done()

    def stop(self):
        self._running = False
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def wait_idle(self, timeout=1.0) -> bool:
        """Block until every queued message has been handled, or ``timeout``."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True


class BroadcastChannel:
    """Holds the set of live observers and pushes log envelopes to them.

    An observer is anything with a ``connected`` flag and a ``send(str)``
    method (a ``simple_websocket.Server`` in production). Each observer
    gets its own ``ObserverFeed``, so ``publish`` only enqueues and a
    stalled socket never holds up the caller. Delivery is best effort:
    closed observers are skipped, a failed send costs that observer the
    event, and a full queue drops new events for that observer.
    """

    def __init__(self, max_pending=DEFAULT_MAX_PENDING):
        self._feeds = {}
        self._lock = threading.Lock()
        self._max_pending = max_pending

    def register(self, observer):
        feed = ObserverFeed(observer, self._max_pending)
        with self._lock:
            previous = self._feeds.pop(observer, None)
            self._feeds[observer] = feed
        if previous is not None:
            previous.stop()
        feed.start()
        logger.info("Observer connected (%d live)", self.count)

    def unregister(self, observer):
        with self._lock:
            feed = self._feeds.pop(observer, None)
        if feed is not None:
            feed.stop()
            if feed.dropped:
                logger.warning("Observer missed %d events while connected", feed.dropped)
        logger.info("Observer disconnected (%d live)", self.count)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._feeds)

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return sum(feed.dropped for feed in self._feeds.values())

    def hello(self, observer):
        observer.send(json.dumps({"type": "hello", "payload": "connected"}))

    def publish(self, entry: dict) -> int:
        """Queue ``{"type": "log", "payload": entry}`` for every open observer.

        Returns the number of observers the message was queued for.
        """
        message = json.dumps({"type": "log", "payload": entry}, default=str)
        with self._lock:
            feeds = list(self._feeds.values())

        queued = 0
        for feed in feeds:
            if not getattr(feed.observer, "connected", False):
                continue
            if feed.offer(message):
                queued += 1
        return queued

    def wait_idle(self, timeout=1.0) -> bool:
        with self._lock:
            feeds = list(self._feeds.values())
        return all(feed.wait_idle(timeout) for feed in feeds)

    # Lets the channel be passed directly as a CaptureLogStore listener.
    __call__ = publish
