import collections
import threading
from datetime import datetime, timezone

from analyzer.models import LogEntry


class CaptureLogStore:
    """Thread-safe in-memory capture log backed by a bounded deque.

    Entries are timestamped on arrival and handed to an optional listener
    (the broadcast channel). The listener runs outside the data lock, so
    readers never wait on it; appends are serialised by a second lock so
    the listener still sees entries in log order.
    """

    def __init__(self, max_size=5000, listener=None):
        self._logs = collections.deque(maxlen=max_size)
        self._lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._listener = listener
        self._total_count = 0

    def set_listener(self, listener):
        self._listener = listener

    def append(self, entry):
        """Stamp, store and broadcast an entry. Returns the stored dict."""
        record = entry.to_dict() if isinstance(entry, LogEntry) else dict(entry)
        with self._publish_lock:
            with self._lock:
                record["timestamp"] = datetime.now(timezone.utc).isoformat()
                self._logs.append(record)
                self._total_count += 1
            if self._listener is not None:
                self._listener(record)
        return record

    def snapshot(self):
        """Return all retained entries in arrival order."""
        with self._lock:
            return list(self._logs)

    @property
    def total_count(self):
        """Total number of entries ever appended."""
        return self._total_count

    @property
    def current_size(self):
        """Number of entries currently retained."""
        return len(self._logs)

    @property
    def evicted_count(self):
        """Entries dropped because the store was at capacity."""
        with self._lock:
            return self._total_count - len(self._logs)
