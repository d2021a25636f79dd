import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np

from stream_memory.core.logging import get_logger


class NoveltyVerdict(str, Enum):
    NOVEL = "novel"
    STALE = "stale"


def assume_novel() -> NoveltyVerdict:
    """Default embedding-error policy: never miss a scene change."""
    return NoveltyVerdict.NOVEL


def assume_stale() -> NoveltyVerdict:
    return NoveltyVerdict.STALE


EmbeddingErrorPolicy = Callable[[], NoveltyVerdict]


# ── Text helpers ───────────────────────────────────────────────────────────────

_PATTERN_INDUCING = [
    re.compile(r"NOTHING_NEW", re.IGNORECASE),
    re.compile(r"nothing new", re.IGNORECASE),
    re.compile(r"no changes?", re.IGNORECASE),
    re.compile(r"same (?:as )?(?:before|previous)", re.IGNORECASE),
    re.compile(r"unchanged", re.IGNORECASE),
]

NEUTRAL_CONTINUATION = "scene continues as described"


def hash_text(text: str) -> int:
    """32-bit signed rolling hash (h * 31 + c); cheap exact-duplicate check."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json") and cleaned.endswith("```") and len(cleaned) >= 10:
        return cleaned[7:-3].strip()
    if cleaned.startswith("```") and cleaned.endswith("```") and len(cleaned) >= 6:
        return cleaned[3:-3].strip()
    return cleaned


def filter_pattern_inducing_content(text: str) -> str:
    """
    Rewrite "nothing changed" phrasing. Fed back as context, the model
    anchors on it and keeps repeating it on later frames.
    """
    filtered = text
    for pattern in _PATTERN_INDUCING:
        filtered = pattern.sub(NEUTRAL_CONTINUATION, filtered)
    return filtered


def sanitize_answer(text: str) -> str:
    return filter_pattern_inducing_content(strip_code_fences(text))


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


# ── Engine ─────────────────────────────────────────────────────────────────────

@dataclass
class NoveltyDecision:
    verdict: NoveltyVerdict
    similarity: Optional[float]
    embedding: Optional[list[float]]

    @property
    def should_update(self) -> bool:
        return self.verdict is NoveltyVerdict.NOVEL


class SimilarityEngine:
    """
    Embeds canonical descriptions and decides whether a new one is novel
    enough to replace the stream's canonical summary.

    `embedder` is anything with `async aembed(text) -> list[float]`.
    """

    def __init__(
        self,
        embedder,
        threshold: float = 0.85,
        gate_enabled: bool = False,
        on_embedding_error: EmbeddingErrorPolicy = assume_novel,
    ):
        self.embedder = embedder
        self.threshold = threshold
        self.gate_enabled = gate_enabled
        self.on_embedding_error = on_embedding_error
        self.logger = get_logger()

    async def embed(self, text: str) -> Optional[list[float]]:
        try:
            vector = await self.embedder.aembed(text)
        except Exception as e:
            self.logger.warning("embedding_failed", error=str(e))
            return None
        if not vector:
            return None
        return list(vector)

    async def assess(
        self,
        text: str,
        previous_summary: Optional[str],
        previous_embedding: Optional[list[float]],
    ) -> NoveltyDecision:
        embedding = await self.embed(text)

        if previous_summary is None:
            return NoveltyDecision(NoveltyVerdict.NOVEL, 0.0, embedding)

        if embedding is None:
            return self._apply_error_policy(None)

        if not self.gate_enabled:
            return NoveltyDecision(NoveltyVerdict.NOVEL, None, embedding)

        baseline = previous_embedding or await self.embed(previous_summary)
        if baseline is None:
            return self._apply_error_policy(embedding)

        similarity = cosine_similarity(embedding, baseline)
        verdict = NoveltyVerdict.NOVEL if similarity < self.threshold else NoveltyVerdict.STALE
        return NoveltyDecision(verdict, similarity, embedding)

    def _apply_error_policy(self, embedding: Optional[list[float]]) -> NoveltyDecision:
        verdict = self.on_embedding_error()
        self.logger.info("similarity_unavailable_policy_applied", verdict=verdict.value)
        return NoveltyDecision(verdict, None, embedding)
