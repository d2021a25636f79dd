import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def buffer_size_for(interval_seconds: float) -> int:
    """
    Buffer capacity for an analysis cadence.

    Fast cadences keep a short window (recent entries dominate relevance),
    slow cadences keep more history so queries still have context:

        interval >= 120      -> 80
        60 <= interval < 120 -> 50
        interval < 10        -> clamp(interval * 2, 15, 20)
        10 <= interval < 60  -> 20 + floor((interval - 10) * 30 / 50)
    """
    if interval_seconds >= 120:
        return 80
    if interval_seconds >= 60:
        return 50
    if interval_seconds < 10:
        return int(max(15, min(20, interval_seconds * 2)))
    return 20 + math.floor((interval_seconds - 10) * 30 / 50)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BufferEntry:
    frame_index: int
    canonical_summary: str
    embedding: Optional[list[float]]
    timestamp: str
    processing_time_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "frame_index": self.frame_index,
            "canonical_summary": self.canonical_summary,
            "embedding": self.embedding,
            "timestamp": self.timestamp,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class StreamBuffer:
    """
    Ordered canonical descriptions for one stream. Insertion order is
    temporal order; eviction is strict FIFO so len(entries) <= max_size
    after every insert.
    """

    interval_seconds: float
    max_size: int = 0
    entries: list[BufferEntry] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.max_size:
            self.max_size = buffer_size_for(self.interval_seconds)

    def __len__(self) -> int:
        return len(self.entries)

    def touch(self):
        self.last_activity = utcnow()

    def append(self, entry: BufferEntry) -> int:
        """Insert an entry and trim. Returns the number of entries dropped."""
        self.entries.append(entry)
        self.touch()
        return self.trim()

    def trim(self) -> int:
        excess = len(self.entries) - self.max_size
        if excess <= 0:
            return 0
        del self.entries[:excess]
        return excess

    def resize(self, interval_seconds: float) -> int:
        """Re-derive capacity for a new interval, dropping the oldest excess now."""
        self.interval_seconds = interval_seconds
        self.max_size = buffer_size_for(interval_seconds)
        return self.trim()

    def clear(self):
        self.entries.clear()

    def latest(self) -> Optional[BufferEntry]:
        return self.entries[-1] if self.entries else None

    def is_idle(self, now: datetime, idle_seconds: float) -> bool:
        return (now - self.last_activity).total_seconds() >= idle_seconds
