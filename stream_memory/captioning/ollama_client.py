import asyncio
import base64
import time

import cv2
import numpy as np
import requests

from stream_memory.core.config import Settings, get_settings
from stream_memory.core.logging import get_logger


class OllamaMultimodalClient:
    """
    describeFrame against Ollama's /api/generate endpoint.

    Used for both the user-facing query and the whole-scene canonical
    description; only the prompt differs. Failures raise (HTTP errors via
    raise_for_status, bad frames via ValueError) with no partial result.
    """

    def __init__(self, settings: Settings = None):
        self.settings = settings or get_settings()
        self.logger = get_logger()
        self.base_url = self.settings.ollama_host
        self.model = self.settings.multimodal_model

    def _encode_image(self, frame_b64: str) -> str:
        if not frame_b64 or len(frame_b64) < self.settings.caption_min_frame_chars:
            raise ValueError("Invalid or too small frame data")

        raw = np.frombuffer(base64.b64decode(frame_b64), dtype=np.uint8)
        frame = cv2.imdecode(raw, cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError("Frame data is not a decodable image")

        # Vision models process at 224-448px; full resolution only burns time
        h, w = frame.shape[:2]
        max_dim = self.settings.caption_max_image_dim
        if max(h, w) > max_dim:
            scale = max_dim / max(h, w)
            frame = cv2.resize(
                frame,
                (max(int(w * scale), 1), max(int(h * scale), 1)),
                interpolation=cv2.INTER_AREA,
            )
        ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, 70])
        if not ok:
            raise ValueError("Frame could not be re-encoded as JPEG")
        return base64.b64encode(buffer).decode("utf-8")

    def describe_frame(self, frame_b64: str, prompt: str) -> dict:
        started = time.perf_counter()
        image_b64 = self._encode_image(frame_b64)

        payload = {
            "model": self.model,
            "prompt": prompt,
            "images": [image_b64],
            "stream": False,
            "options": {
                "num_predict": self.settings.caption_max_tokens,
                "temperature": 0.1,
                "top_p": 0.9,
                "repeat_penalty": 1.1,
            },
        }

        response = requests.post(
            f"{self.base_url}/api/generate",
            json=payload,
            timeout=self.settings.caption_timeout_seconds,
        )
        response.raise_for_status()

        answer = (response.json().get("response") or "").strip()
        if not answer:
            raise ValueError("Ollama returned no response text")

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        self.logger.debug(
            "frame_described",
            model=self.model,
            answer_length=len(answer),
            processing_time_ms=processing_time_ms,
        )
        return {
            "answer": answer,
            "model": self.model,
            "processing_time_ms": processing_time_ms,
        }

    async def adescribe_frame(self, frame_b64: str, prompt: str) -> dict:
        return await asyncio.to_thread(self.describe_frame, frame_b64, prompt)
