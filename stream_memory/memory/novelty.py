import asyncio
import functools
import time
from typing import Optional

from stream_memory.core.config import Settings
from stream_memory.core.logging import get_logger
from stream_memory.memory.buffer import utcnow
from stream_memory.memory.similarity import strip_code_fences
from stream_memory.memory.store import (
    DeferredNoveltyResult,
    NoveltyState,
    StreamState,
    StreamStateStore,
)
from stream_memory.prompts.canonical_prompt import build_canonical_prompt


class NoveltyCoordinator:
    """
    Background canonical scene analysis, single-flight per stream.

    A finished analysis is parked on the stream as a deferred result and
    consumed by the *next* process_frame call, so the user-facing query
    never waits on this second model call (except on slow cadences, where
    there is time to spare and the caller awaits it).

    `describer` is anything with `async adescribe_frame(frame_b64, prompt) -> {"answer": ...}`.
    """

    def __init__(self, describer, store: StreamStateStore, settings: Settings):
        self.describer = describer
        self.store = store
        self.settings = settings
        self.logger = get_logger()
        self._semaphore = asyncio.Semaphore(settings.analysis_max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    def is_fire_and_forget(self, interval_seconds: float) -> bool:
        return (
            self.settings.async_novelty_enabled
            and interval_seconds <= self.settings.fast_interval_seconds
        )

    async def schedule(
        self,
        state: StreamState,
        frame_b64: str,
        frame_number: int,
        user_prompt: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Start a canonical analysis for `frame_number` unless one is already in flight."""
        if state.is_pending:
            state.metrics.canonical_skipped_in_flight += 1
            self.logger.info(
                "canonical_analysis_skipped_in_flight",
                stream_id=state.stream_id,
                frame=frame_number,
            )
            return None

        prompt = build_canonical_prompt(user_prompt)

        state.novelty_state = NoveltyState.PENDING
        try:
            task = asyncio.create_task(
                self._perform(state, frame_b64, prompt, frame_number),
                name=f"canonical:{state.stream_id}:{frame_number}",
            )
        except Exception:
            state.novelty_state = NoveltyState.FAILED
            raise

        state.pending_task = task
        state.metrics.canonical_started += 1
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(functools.partial(self._finish, state, frame_number))

        if not self.is_fire_and_forget(state.buffer.interval_seconds):
            await task
        return task

    async def _perform(
        self, state: StreamState, frame_b64: str, prompt: str, frame_number: int
    ) -> Optional[DeferredNoveltyResult]:
        started = time.perf_counter()
        try:
            async with self._semaphore:
                response = await self.describer.adescribe_frame(frame_b64, prompt)
            text = strip_code_fences((response or {}).get("answer") or "")
            if not text:
                raise ValueError("empty canonical description")
        except Exception as e:
            state.metrics.canonical_failed += 1
            self.logger.exception(
                "canonical_analysis_failed",
                stream_id=state.stream_id,
                frame=frame_number,
                error=str(e),
            )
            return None

        return DeferredNoveltyResult(
            result_text=text,
            frame_number=frame_number,
            timestamp_iso=utcnow().isoformat(),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    def _finish(self, state: StreamState, frame_number: int, task: asyncio.Task):
        """
        Done-callback for every canonical task. Unlike a `finally` inside
        _perform, it also fires when the task is cancelled before its first
        step, so the stream can never be left PENDING.
        """
        stream_id = state.stream_id
        if state.pending_task is task:
            state.pending_task = None

        if task.cancelled():
            state.novelty_state = NoveltyState.IDLE
            self.logger.info("canonical_analysis_cancelled", stream_id=stream_id, frame=frame_number)
            return

        error = task.exception()
        result = None if error is not None else task.result()

        if self.store.get(stream_id) is not state:
            state.novelty_state = NoveltyState.IDLE
            self.logger.info(
                "canonical_result_dropped_stream_evicted",
                stream_id=stream_id,
                frame=frame_number,
            )
        elif result is None:
            state.novelty_state = NoveltyState.FAILED
        else:
            state.deferred_result = result
            state.novelty_state = NoveltyState.COMPLETED
            state.metrics.last_processing_time_ms = result.processing_time_ms
            self.logger.info(
                "canonical_analysis_completed",
                stream_id=stream_id,
                frame=frame_number,
                processing_time_ms=result.processing_time_ms,
                summary_length=len(result.result_text),
            )

    async def wait_for_pending(self, stream_id: Optional[str] = None):
        """Await in-flight analyses (all streams, or one). Never raises task errors."""
        if stream_id is None:
            tasks = list(self._tasks)
        else:
            state = self.store.get(stream_id)
            tasks = [state.pending_task] if state and state.pending_task else []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
