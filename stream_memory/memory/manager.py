import asyncio
from datetime import datetime
from typing import Optional

from stream_memory.captioning.embedder import OllamaEmbedder
from stream_memory.captioning.ollama_client import OllamaMultimodalClient
from stream_memory.core.config import Settings, get_settings
from stream_memory.core.event_bus import EventBus, event_bus
from stream_memory.core.logging import get_logger
from stream_memory.memory.buffer import BufferEntry, StreamBuffer, utcnow
from stream_memory.memory.context import ContextPromptBuilder
from stream_memory.memory.novelty import NoveltyCoordinator
from stream_memory.memory.similarity import (
    EmbeddingErrorPolicy,
    SimilarityEngine,
    assume_novel,
    hash_text,
    sanitize_answer,
)
from stream_memory.memory.store import (
    DeferredNoveltyResult,
    StreamState,
    StreamStateStore,
)


class StreamMemoryManager:
    """
    Rolling, deduplicated scene memory for every live stream.

    Per cycle: consume the previous frame's canonical description (if it
    belongs to frame N-1), store it unless it is a duplicate, then start
    the canonical analysis for frame N in the background. The caller builds
    its user-facing prompt with build_context_prompt and runs its own model
    call alongside; nothing here ever raises into that path.

    All per-stream state sits on one StreamState in `store`, created on the
    first frame and dropped together by clear_buffer / the idle sweep.
    """

    def __init__(
        self,
        describer=None,
        embedder=None,
        settings: Settings = None,
        store: StreamStateStore = None,
        bus: EventBus = None,
        on_embedding_error: EmbeddingErrorPolicy = assume_novel,
    ):
        self.settings = settings or get_settings()
        self.logger = get_logger()
        self.store = store if store is not None else StreamStateStore()
        self.bus = bus or event_bus

        self.describer = describer or OllamaMultimodalClient(self.settings)
        self.similarity = SimilarityEngine(
            embedder or OllamaEmbedder(self.settings),
            threshold=self.settings.similarity_threshold,
            gate_enabled=self.settings.similarity_gate_enabled,
            on_embedding_error=on_embedding_error,
        )
        self.coordinator = NoveltyCoordinator(self.describer, self.store, self.settings)
        self.context_builder = ContextPromptBuilder(self.settings.context_max_lines)

        self._request_count = 0
        self._cleanup_task: Optional[asyncio.Task] = None

    # ── Buffers ────────────────────────────────────────────────────────────────

    def initialize_buffer(self, stream_id: str, interval_seconds: float) -> StreamBuffer:
        state, created = self.store.get_or_create(
            stream_id,
            lambda: StreamState(stream_id=stream_id, buffer=StreamBuffer(interval_seconds)),
        )
        buffer = state.buffer

        if created:
            self.logger.info(
                "stream_buffer_initialized",
                stream_id=stream_id,
                interval_seconds=interval_seconds,
                max_size=buffer.max_size,
            )
        elif (
            interval_seconds != buffer.interval_seconds
            and self.settings.resize_on_interval_change
        ):
            old_size = buffer.max_size
            dropped = buffer.resize(interval_seconds)
            self.logger.info(
                "stream_buffer_resized",
                stream_id=stream_id,
                interval_seconds=interval_seconds,
                old_max_size=old_size,
                max_size=buffer.max_size,
                entries_dropped=dropped,
            )

        buffer.touch()
        return buffer

    def get_buffer(self, stream_id: str) -> list[BufferEntry]:
        state = self.store.get(stream_id)
        return list(state.buffer.entries) if state else []

    def get_metrics(self, stream_id: str) -> Optional[dict]:
        state = self.store.get(stream_id)
        if state is None:
            return None
        metrics = state.metrics.to_dict()
        metrics.update(
            frame_counter=state.frame_counter,
            buffer_entries=len(state.buffer),
            max_size=state.buffer.max_size,
            novelty_state=state.novelty_state.value,
        )
        return metrics

    def clear_buffer(self, stream_id: str, keep_frame_counter: bool = False) -> bool:
        state = self.store.get(stream_id)
        if state is None:
            return False
        state.reset_memory(keep_frame_counter=keep_frame_counter)
        self.logger.info(
            "stream_buffer_cleared",
            stream_id=stream_id,
            keep_frame_counter=keep_frame_counter,
        )
        return True

    # ── Previous answers ───────────────────────────────────────────────────────

    def store_previous_answer(self, stream_id: str, answer: Optional[str]):
        if not answer or not answer.strip():
            return
        state = self.store.get(stream_id)
        if state is None:
            return
        state.previous_answer = sanitize_answer(answer)

    def get_previous_answer(self, stream_id: str) -> Optional[str]:
        state = self.store.get(stream_id)
        return state.previous_answer if state else None

    # ── Context ────────────────────────────────────────────────────────────────

    def build_context_prompt(self, stream_id: str, user_prompt: str) -> str:
        state = self.store.get(stream_id)
        prompt, lines_sent = self.context_builder.build(state, user_prompt)
        if state is not None:
            state.metrics.context_lines_sent = lines_sent
        return prompt

    # ── Per-frame cycle ────────────────────────────────────────────────────────

    async def process_frame(
        self,
        stream_id: str,
        frame_b64: str,
        interval_seconds: float,
        user_prompt: Optional[str] = None,
    ) -> Optional[DeferredNoveltyResult]:
        """
        Run one memory cycle for a stream and return the deferred result
        consumed this cycle (or None). Never raises.
        """
        self._request_count += 1
        verbose = self._request_count % self.settings.log_sample_rate == 0

        state = None
        deferred = None
        try:
            self.initialize_buffer(stream_id, interval_seconds)
            state = self.store.get(stream_id)
            state.frame_counter += 1
            state.metrics.frames_processed += 1

            deferred = self._take_matching_deferred(state, state.frame_counter)
            if deferred is not None:
                await self._apply_deferred(state, deferred)
        except Exception as e:
            self.logger.exception("memory_cycle_failed", stream_id=stream_id, error=str(e))
            deferred = None

        if state is None or self.store.get(stream_id) is not state:
            return None

        if verbose:
            self.logger.debug(
                "memory_cycle",
                stream_id=stream_id,
                frame=state.frame_counter,
                entries=len(state.buffer),
                max_size=state.buffer.max_size,
                consumed_frame=deferred.frame_number if deferred else None,
                novelty_state=state.novelty_state.value,
            )

        try:
            await self.coordinator.schedule(state, frame_b64, state.frame_counter, user_prompt)
        except Exception as e:
            self.logger.exception(
                "canonical_analysis_schedule_failed", stream_id=stream_id, error=str(e)
            )

        return deferred

    def _take_matching_deferred(
        self, state: StreamState, frame_number: int
    ) -> Optional[DeferredNoveltyResult]:
        candidate = state.take_deferred()
        if candidate is None:
            return None

        expected = frame_number - 1
        if candidate.frame_number != expected:
            state.metrics.stale_results_discarded += 1
            self.logger.debug(
                "deferred_result_frame_mismatch",
                stream_id=state.stream_id,
                expected_frame=expected,
                result_frame=candidate.frame_number,
            )
            return None
        return candidate

    async def _apply_deferred(self, state: StreamState, deferred: DeferredNoveltyResult) -> bool:
        text = deferred.result_text
        digest = hash_text(text)
        if digest == state.last_stored_hash:
            state.metrics.duplicates_skipped += 1
            self.logger.info(
                "canonical_duplicate_skipped",
                stream_id=state.stream_id,
                frame=deferred.frame_number,
            )
            return False

        decision = await self.similarity.assess(text, state.canonical_summary, state.embedding)

        if self.store.get(state.stream_id) is not state:
            return False

        if not decision.should_update:
            state.metrics.near_duplicates_skipped += 1
            self.logger.info(
                "canonical_near_duplicate_skipped",
                stream_id=state.stream_id,
                frame=deferred.frame_number,
                similarity=decision.similarity,
            )
            return False

        state.canonical_summary = text
        state.embedding = decision.embedding
        state.last_stored_hash = digest
        self._store_entry(
            state,
            frame_index=deferred.frame_number,
            text=text,
            embedding=decision.embedding,
            processing_time_ms=deferred.processing_time_ms,
        )
        return True

    def _store_entry(self, state, frame_index, text, embedding, processing_time_ms):
        entry = BufferEntry(
            frame_index=frame_index,
            canonical_summary=text,
            embedding=embedding,
            timestamp=utcnow().isoformat(),
            processing_time_ms=processing_time_ms,
        )
        dropped = state.buffer.append(entry)
        state.metrics.memory_entries_added += 1

        self.logger.info(
            "memory_entry_stored",
            stream_id=state.stream_id,
            frame=frame_index,
            entries=len(state.buffer),
            entries_dropped=dropped,
            has_embedding=embedding is not None,
        )
        self.bus.publish(
            "memory_entry_stored",
            {"stream_id": state.stream_id, "frame": frame_index, "entries": len(state.buffer)},
        )

    async def seed_buffer_from_main_analysis(
        self, stream_id: str, answer: str, interval_seconds: float
    ) -> bool:
        """Seed an empty buffer from the user-facing answer so frame 2 has context."""
        if not answer or not answer.strip():
            return False
        buffer = self.initialize_buffer(stream_id, interval_seconds)
        if len(buffer) > 0:
            return False

        state = self.store.get(stream_id)
        text = sanitize_answer(answer)
        embedding = await self.similarity.embed(text)

        if self.store.get(stream_id) is not state or len(state.buffer) > 0:
            return False

        state.canonical_summary = text
        state.embedding = embedding
        state.last_stored_hash = hash_text(text)
        self._store_entry(state, state.frame_counter, text, embedding, None)
        self.logger.info("stream_buffer_seeded", stream_id=stream_id)
        return True

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def cleanup_idle_buffers(self, now: datetime = None) -> int:
        """Drop the whole footprint of every stream idle for the timeout."""
        now = now or utcnow()
        idle_seconds = self.settings.idle_timeout_seconds
        removed = 0

        for state in self.store:
            if not state.buffer.is_idle(now, idle_seconds):
                continue
            self.store.delete(state.stream_id)
            removed += 1
            self.bus.publish("stream_evicted", {"stream_id": state.stream_id})

        if removed:
            self.logger.info("idle_streams_evicted", count=removed, remaining=len(self.store))
        return removed

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            try:
                self.cleanup_idle_buffers()
            except Exception as e:
                self.logger.exception("idle_cleanup_failed", error=str(e))

    def start(self):
        """Start the periodic idle sweep on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(), name="stream-memory-idle-sweep"
            )

    async def stop(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        await self.coordinator.wait_for_pending()

    async def wait_for_pending(self, stream_id: Optional[str] = None):
        await self.coordinator.wait_for_pending(stream_id)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
