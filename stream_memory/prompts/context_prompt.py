NO_SCENE_CONTEXT = "No previous scene context available"

CONTEXT_PROMPT_TEMPLATE = """User prompt: {user_prompt}

**Temporal Context:**
This is frame {frame_number} of a continuous video stream.

**Relevant Scene History from Memory:**
{scene_history}

**Current Scene Description:**
[Will be provided after current frame analysis]"""

PREVIOUS_ANSWER_TEMPLATE = """

**Your previous response for context:**
{previous_answer}"""

CURRENT_FRAME_MARKER = "\n\nCurrent frame: [Image]\nPlease answer accordingly."
