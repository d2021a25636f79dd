import asyncio

from stream_memory.core.logging import get_logger
from stream_memory.memory.manager import StreamMemoryManager


class LiveQAEngine:
    """
    One analysis cycle for a live stream: answer the user's question about
    the current frame while the memory cycle runs alongside.

    The answer call uses the context prompt built from memory *before*
    this cycle updates it; both model calls run concurrently.
    """

    def __init__(self, memory: StreamMemoryManager, describer=None):
        self.memory = memory
        self.describer = describer or memory.describer
        self.logger = get_logger()

    async def ask(
        self,
        stream_id: str,
        frame_b64: str,
        question: str,
        interval_seconds: float,
        use_memory: bool = True,
    ) -> dict:
        self.logger.info("live_qa_asked", stream_id=stream_id, question=question)

        if not use_memory:
            response = await self.describer.adescribe_frame(frame_b64, question)
            return {
                "answer": response["answer"],
                "frame_number": None,
                "deferred_result": None,
                "metrics": None,
            }

        self.memory.initialize_buffer(stream_id, interval_seconds)
        prompt = self.memory.build_context_prompt(stream_id, question)

        answer_response, deferred = await asyncio.gather(
            self.describer.adescribe_frame(frame_b64, prompt),
            self.memory.process_frame(stream_id, frame_b64, interval_seconds, question),
        )
        answer = answer_response["answer"]

        self.memory.store_previous_answer(stream_id, answer)
        if not self.memory.get_buffer(stream_id):
            await self.memory.seed_buffer_from_main_analysis(stream_id, answer, interval_seconds)

        metrics = self.memory.get_metrics(stream_id)
        self.logger.info(
            "live_qa_answered",
            stream_id=stream_id,
            frame=metrics["frame_counter"] if metrics else None,
            consumed_frame=deferred.frame_number if deferred else None,
        )
        return {
            "answer": answer,
            "frame_number": metrics["frame_counter"] if metrics else None,
            "deferred_result": deferred.to_dict() if deferred else None,
            "metrics": metrics,
        }

