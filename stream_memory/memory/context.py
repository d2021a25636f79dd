from typing import Optional

from stream_memory.memory.store import StreamState
from stream_memory.prompts.context_prompt import (
    CONTEXT_PROMPT_TEMPLATE,
    CURRENT_FRAME_MARKER,
    NO_SCENE_CONTEXT,
    PREVIOUS_ANSWER_TEMPLATE,
)


def _limit_lines(text: str, max_lines: int) -> list[str]:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[:max_lines]


class ContextPromptBuilder:
    """
    Builds the prompt for the synchronous user-facing call.

    Fixed order: user prompt, frame ordinal (entries + 1), latest canonical
    summary (or the no-context marker), previous answer (skipped on the
    first frame), current-frame marker. Reads state, never mutates it.
    """

    def __init__(self, context_max_lines: int = 3):
        self.context_max_lines = context_max_lines

    def build(self, state: Optional[StreamState], user_prompt: str) -> tuple[str, int]:
        """Return (prompt, number of history lines included)."""
        entries = len(state.buffer) if state else 0
        is_first_frame = entries == 0
        canonical = state.canonical_summary if state else None
        previous = state.previous_answer if state else None

        history_lines = _limit_lines(canonical, self.context_max_lines) if canonical else []
        prompt = CONTEXT_PROMPT_TEMPLATE.format(
            user_prompt=user_prompt,
            frame_number=entries + 1,
            scene_history="\n".join(history_lines) or NO_SCENE_CONTEXT,
        )

        if previous and not is_first_frame:
            answer_lines = _limit_lines(previous, self.context_max_lines)
            if answer_lines:
                prompt += PREVIOUS_ANSWER_TEMPLATE.format(previous_answer="\n".join(answer_lines))

        prompt += CURRENT_FRAME_MARKER
        return prompt, len(history_lines)
