import asyncio

import requests

from stream_memory.core.config import Settings, get_settings
from stream_memory.core.logging import get_logger


class OllamaEmbedder:
    """
    Generates text embeddings via Ollama's /api/embeddings endpoint.
    Uses nomic-embed-text (768-dim) by default: fast, local, no API key needed.
    """

    def __init__(self, settings: Settings = None):
        self.settings = settings or get_settings()
        self.logger = get_logger()
        self.base_url = self.settings.ollama_host
        self.model = self.settings.embed_model

    def embed(self, text: str) -> list[float]:
        payload = {
            "model": self.model,
            "prompt": text,
        }

        response = requests.post(
            f"{self.base_url}/api/embeddings",
            json=payload,
            timeout=self.settings.embed_timeout_seconds,
        )
        response.raise_for_status()

        return response.json()["embedding"]

    async def aembed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed, text)
