import asyncio

import pytest

from stream_memory.core.config import Settings
from stream_memory.core.event_bus import EventBus
from stream_memory.memory.manager import StreamMemoryManager

# Never decoded by the fakes; only its presence matters
FRAME = "ZmFrZS1qcGVn" * 100


class FakeDescriber:
    """
    Scripted stand-in for OllamaMultimodalClient.adescribe_frame.

    Answers are popped in order (falling back to "scene N"). Setting `gate`
    to an asyncio.Event holds every call open until the test sets it.
    """

    def __init__(self, answers=None, error=None, responder=None):
        self.answers = list(answers or [])
        self.error = error
        self.responder = responder
        self.prompts = []
        self.gate = None
        self.active = 0
        self.max_active = 0

    async def adescribe_frame(self, frame_b64, prompt):
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            if self.responder is not None:
                return {"answer": self.responder(prompt)}
            if self.answers:
                return {"answer": self.answers.pop(0)}
            return {"answer": f"scene {len(self.prompts)}"}
        finally:
            self.active -= 1


class FakeEmbedder:
    """Stand-in for OllamaEmbedder.aembed; vectors looked up by text."""

    def __init__(self, vectors=None, default=None, error=None):
        self.vectors = vectors or {}
        self.default = default
        self.error = error
        self.calls = []

    async def aembed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return self.vectors[text]
        if self.default is not None:
            return self.default
        return [float(len(text)), 1.0, 0.5]


async def settle(rounds: int = 5):
    """Let freshly created tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_manager(bus):
    def _make(describer=None, embedder=None, settings=None, **kwargs):
        return StreamMemoryManager(
            describer=describer or FakeDescriber(),
            embedder=embedder or FakeEmbedder(),
            settings=settings or make_settings(),
            bus=bus,
            **kwargs,
        )

    return _make
