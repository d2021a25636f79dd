CANONICAL_SCENE_PROMPT = """
Comprehensively analyze this video frame and write a complete, objective description of everything visible.

OUTPUT RULES (read before analyzing):
- Return ONE continuous paragraph of plain text.
- NO JSON, NO bullet points, NO headers, NO markdown, NO numbered sections.
- Describe the ENTIRE frame, not only what a question might be about.

WHAT TO COVER:
Scan the frame methodically: foreground, background, center, periphery.
Every person, vehicle, animal and object, with position in frame, color, size, orientation and state.
Surfaces, lighting conditions, shadows, reflections.
Any legible text, signage or screens.
Spatial relationships between entities (left of, behind, on top of, next to).

Only observable facts. No interpretation, no narrative, no speculation about intent.

Example of the expected format:
"A bearded man in a blue shirt sits at a wooden desk with an open laptop directly in front of him, a red ceramic mug to the right of the laptop and a stack of white papers to the left, while daylight from a partly open window behind him casts soft shadows across the desk."
""".strip()


TASK_FOCUS_TEMPLATE = """

TASK FOCUS:
The user watching this stream is asking: "{user_prompt}"
- Give EXTRA detail to elements relevant to this request.
- If the request names objects, people or actions, describe those precisely.
- Still describe the whole frame; this guidance only sharpens detail.
"""


def build_canonical_prompt(user_prompt: str = None) -> str:
    """Whole-frame prompt, optionally sharpened toward the current query."""
    if user_prompt and user_prompt.strip():
        return CANONICAL_SCENE_PROMPT + TASK_FOCUS_TEMPLATE.format(
            user_prompt=user_prompt.strip()
        )
    return CANONICAL_SCENE_PROMPT
