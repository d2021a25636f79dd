"""
Per-stream state and the store that owns it.

Everything a stream accumulates (buffer, counters, canonical summary,
embedding, dedup hash, previous answer, novelty task, metrics) lives on one
StreamState so it is created together and destroyed together. The manager
only talks to the store through get / get_or_create / delete, so a sharded
or externally persisted store can replace the in-memory one.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Callable, Dict, Iterator, Optional

from stream_memory.memory.buffer import StreamBuffer


class NoveltyState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DeferredNoveltyResult:
    result_text: str
    frame_number: int
    timestamp_iso: str
    processing_time_ms: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StreamMetrics:
    frames_processed: int = 0
    memory_entries_added: int = 0
    duplicates_skipped: int = 0
    near_duplicates_skipped: int = 0
    stale_results_discarded: int = 0
    canonical_started: int = 0
    canonical_skipped_in_flight: int = 0
    canonical_failed: int = 0
    context_lines_sent: int = 0
    last_processing_time_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StreamState:
    stream_id: str
    buffer: StreamBuffer
    frame_counter: int = 0
    previous_answer: Optional[str] = None
    canonical_summary: Optional[str] = None
    embedding: Optional[list[float]] = None
    last_stored_hash: Optional[int] = None

    # Idle -> Pending -> {Completed | Failed} -> Idle
    novelty_state: NoveltyState = NoveltyState.IDLE
    pending_task: Optional[asyncio.Task] = None
    deferred_result: Optional[DeferredNoveltyResult] = None

    metrics: StreamMetrics = field(default_factory=StreamMetrics)

    @property
    def is_pending(self) -> bool:
        return self.novelty_state is NoveltyState.PENDING

    def take_deferred(self) -> Optional[DeferredNoveltyResult]:
        """Remove and return the stored result; a Completed/Failed slot goes back to Idle."""
        result = self.deferred_result
        self.deferred_result = None
        if self.novelty_state in (NoveltyState.COMPLETED, NoveltyState.FAILED):
            self.novelty_state = NoveltyState.IDLE
        return result

    def reset_memory(self, keep_frame_counter: bool = False):
        self.buffer.clear()
        self.canonical_summary = None
        self.embedding = None
        self.last_stored_hash = None
        self.take_deferred()
        if not keep_frame_counter:
            self.frame_counter = 0


class StreamStateStore:
    """In-process store of StreamState keyed by stream ID."""

    def __init__(self):
        self._states: Dict[str, StreamState] = {}

    def get(self, stream_id: str) -> Optional[StreamState]:
        return self._states.get(stream_id)

    def get_or_create(
        self, stream_id: str, factory: Callable[[], StreamState]
    ) -> tuple[StreamState, bool]:
        state = self._states.get(stream_id)
        if state is not None:
            return state, False
        state = factory()
        self._states[stream_id] = state
        return state, True

    def delete(self, stream_id: str) -> Optional[StreamState]:
        return self._states.pop(stream_id, None)

    def __contains__(self, stream_id: str) -> bool:
        return stream_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[StreamState]:
        return iter(list(self._states.values()))
