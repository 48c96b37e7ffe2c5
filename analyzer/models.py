"""Capture log entry model."""

from dataclasses import asdict, dataclass
from typing import Any, Optional

SOURCES = ("proxy", "client")
KINDS = ("request", "resource", "error", "client-event")


@dataclass
class LogEntry:
    source: str                       # "proxy" or "client"
    kind: str                         # one of KINDS
    target: Optional[str] = None      # resolved absolute URL
    method: Optional[str] = None
    request: Optional[dict] = None    # headers, bodyPreview, bodyRedacted
    response: Optional[dict] = None   # status, headers, bodyPreview
    error: Optional[str] = None
    event: Optional[str] = None       # client event name, e.g. "fetch"
    data: Optional[dict] = None       # redacted client report
    timestamp: Optional[str] = None   # set by the log store only

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f"unknown source: {self.source!r}")
        if self.kind not in KINDS:
            raise ValueError(f"unknown kind: {self.kind!r}")

    def to_dict(self) -> dict[str, Any]:
        """Wire form: unset fields are left out."""
        return {k: v for k, v in asdict(self).items() if v is not None}
