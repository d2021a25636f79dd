import asyncio
import time
import requests

from stream_memory.core.logging import setup_logging, get_logger
from stream_memory.core.config import get_settings
from stream_memory.live.qa_engine import LiveQAEngine
from stream_memory.memory.manager import StreamMemoryManager
from stream_memory.vision.frame_sampler import FrameSampler

MAX_RETRIES = 10
RETRY_DELAY = 3


def wait_for_ollama(logger):
    settings = get_settings()
    url = f"{settings.ollama_host}/api/tags"
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            if requests.get(url, timeout=5).status_code == 200:
                logger.info("ollama_ready", host=settings.ollama_host)
                return
        except requests.exceptions.RequestException:
            pass
        logger.warning("ollama_not_ready_retrying", attempt=attempt)
        time.sleep(RETRY_DELAY)
    raise RuntimeError("Ollama not ready after retries")


def pull_model(logger, model_name: str):
    """Pull a model from Ollama if not already present. Idempotent."""
    settings = get_settings()
    logger.info("pulling_model", model=model_name)
    try:
        response = requests.post(
            f"{settings.ollama_host}/api/pull",
            json={"name": model_name, "stream": False},
            timeout=600,
        )
        response.raise_for_status()
        logger.info("model_ready", model=model_name)
    except Exception as e:
        logger.error("model_pull_failed", model=model_name, error=str(e))
        raise


async def run_live(logger):
    """
    Replay a video as a live camera: one analysis cycle per interval,
    answering LIVE_QUESTION with stream memory as context.
    """
    settings = get_settings()
    interval = settings.analysis_interval_seconds
    sampler = FrameSampler(settings.video_input_path, interval)

    async with StreamMemoryManager(settings=settings) as memory:
        engine = LiveQAEngine(memory)
        for frame_b64, second in sampler:
            try:
                result = await engine.ask(
                    stream_id=settings.camera_id,
                    frame_b64=frame_b64,
                    question=settings.live_question,
                    interval_seconds=interval,
                )
            except Exception as e:
                logger.error("live_cycle_failed", second=second, error=str(e))
                continue
            logger.info(
                "live_cycle_completed",
                second=second,
                frame=result["frame_number"],
                answer=result["answer"],
            )


def main():
    setup_logging()
    logger = get_logger()
    settings = get_settings()

    logger.info("starting_application")

    if not settings.video_input_path:
        raise RuntimeError("VIDEO_INPUT_PATH is not set")

    wait_for_ollama(logger)

    # Pull all required models (idempotent)
    pull_model(logger, settings.multimodal_model)
    pull_model(logger, settings.embed_model)

    asyncio.run(run_live(logger))
    logger.info("live_replay_completed")


if __name__ == "__main__":
    main()
