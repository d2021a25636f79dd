import asyncio

import pytest

from conftest import FakeEmbedder
from stream_memory.memory.similarity import (
    NoveltyVerdict,
    SimilarityEngine,
    assume_stale,
    cosine_similarity,
    filter_pattern_inducing_content,
    hash_text,
    sanitize_answer,
    strip_code_fences,
)


# ---------------------------------------------------------------------------
# cosine_similarity
# ---------------------------------------------------------------------------


def test_cosine_identical_and_orthogonal():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


@pytest.mark.parametrize(
    "a, b",
    [
        (None, [1.0]),
        ([1.0], None),
        ([], []),
        ([1.0, 2.0], [1.0]),
        ([0.0, 0.0], [1.0, 1.0]),
    ],
)
def test_cosine_degenerate_inputs_return_zero(a, b):
    assert cosine_similarity(a, b) == 0.0


# ---------------------------------------------------------------------------
# hashing and sanitation
# ---------------------------------------------------------------------------


def test_hash_text_matches_32bit_rolling_hash():
    assert hash_text("") == 0
    assert hash_text("a") == 97
    assert hash_text("ab") == 97 * 31 + 98
    assert hash_text("hello") == 99162322
    # Wraps to a signed 32-bit value
    assert hash_text("polygenelubricants") == -(2**31)


def test_hash_text_distinguishes_texts():
    assert hash_text("a red car") != hash_text("a blue car")
    assert hash_text("a red car") == hash_text("a red car")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('```json\n{"people": 2}\n```', '{"people": 2}'),
        ("```\nTwo people at the door\n```", "Two people at the door"),
        ("  plain answer  ", "plain answer"),
        ("```unterminated", "```unterminated"),
    ],
)
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("NOTHING_NEW", "scene continues as described"),
        ("Nothing new here.", "scene continues as described here."),
        ("No changes detected", "scene continues as described detected"),
        ("no change", "scene continues as described"),
        ("Same as before.", "scene continues as described."),
        ("same previous layout", "scene continues as described layout"),
        ("The room is UNCHANGED", "The room is scene continues as described"),
        ("A man walks in", "A man walks in"),
    ],
)
def test_filter_pattern_inducing_content(raw, expected):
    assert filter_pattern_inducing_content(raw) == expected


def test_sanitize_answer_strips_fence_then_filters():
    assert sanitize_answer("```\nScene unchanged\n```") == "Scene scene continues as described"


# ---------------------------------------------------------------------------
# SimilarityEngine
# ---------------------------------------------------------------------------


def test_embed_returns_none_on_failure():
    engine = SimilarityEngine(FakeEmbedder(error=RuntimeError("ollama down")))
    assert asyncio.run(engine.embed("anything")) is None


def test_embed_returns_none_on_empty_vector():
    engine = SimilarityEngine(FakeEmbedder(default=[]))
    assert asyncio.run(engine.embed("anything")) is None


def test_first_description_is_always_novel():
    engine = SimilarityEngine(FakeEmbedder(), gate_enabled=True)
    decision = asyncio.run(engine.assess("a red car", None, None))
    assert decision.should_update
    assert decision.similarity == 0.0
    assert decision.embedding is not None


def test_gate_disabled_always_updates():
    engine = SimilarityEngine(FakeEmbedder(default=[1.0, 0.0]), gate_enabled=False)
    decision = asyncio.run(engine.assess("b", "a", [1.0, 0.0]))
    assert decision.verdict is NoveltyVerdict.NOVEL
    assert decision.similarity is None


def test_gate_enabled_skips_near_duplicates():
    engine = SimilarityEngine(FakeEmbedder(default=[1.0, 0.0]), threshold=0.85, gate_enabled=True)
    decision = asyncio.run(engine.assess("b", "a", [1.0, 0.05]))
    assert decision.verdict is NoveltyVerdict.STALE
    assert decision.similarity > 0.85


def test_gate_enabled_accepts_different_scene():
    engine = SimilarityEngine(FakeEmbedder(default=[0.0, 1.0]), threshold=0.85, gate_enabled=True)
    decision = asyncio.run(engine.assess("b", "a", [1.0, 0.0]))
    assert decision.should_update
    assert decision.similarity == pytest.approx(0.0)


def test_gate_embeds_previous_summary_when_no_cached_embedding():
    embedder = FakeEmbedder(vectors={"new": [1.0, 0.0], "old": [0.0, 1.0]})
    engine = SimilarityEngine(embedder, gate_enabled=True)
    decision = asyncio.run(engine.assess("new", "old", None))
    assert embedder.calls == ["new", "old"]
    assert decision.should_update


def test_embedding_error_uses_policy():
    failing = FakeEmbedder(error=RuntimeError("boom"))

    novel = SimilarityEngine(failing, gate_enabled=True)
    assert asyncio.run(novel.assess("b", "a", [1.0])).verdict is NoveltyVerdict.NOVEL

    stale = SimilarityEngine(failing, gate_enabled=True, on_embedding_error=assume_stale)
    assert asyncio.run(stale.assess("b", "a", [1.0])).verdict is NoveltyVerdict.STALE


def test_embedding_error_uses_policy_with_gate_disabled():
    failing = FakeEmbedder(error=RuntimeError("boom"))

    novel = SimilarityEngine(failing, gate_enabled=False)
    assert asyncio.run(novel.assess("b", "a", [1.0])).verdict is NoveltyVerdict.NOVEL

    stale = SimilarityEngine(failing, gate_enabled=False, on_embedding_error=assume_stale)
    decision = asyncio.run(stale.assess("b", "a", [1.0]))
    assert decision.verdict is NoveltyVerdict.STALE
    assert decision.embedding is None
