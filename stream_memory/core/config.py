from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    app_env: str = Field("development", alias="APP_ENV")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    service_name: str = Field("stream-memory", alias="SERVICE_NAME")

    ollama_host: str = Field("http://localhost:11434", alias="OLLAMA_HOST")

    # Vision model: answers user queries and writes canonical scene descriptions
    multimodal_model: str = Field("llava:7b", alias="MULTIMODAL_MODEL")

    # Embedding model for novelty similarity (768-dim)
    embed_model: str = Field("nomic-embed-text", alias="EMBED_MODEL")

    # Captioning performance
    caption_timeout_seconds: int = Field(25, alias="CAPTION_TIMEOUT_SECONDS")
    caption_max_tokens: int = Field(256, alias="CAPTION_MAX_TOKENS")
    caption_max_image_dim: int = Field(256, alias="CAPTION_MAX_IMAGE_DIM")
    # Anything shorter than this cannot be a real base64 JPEG
    caption_min_frame_chars: int = Field(1000, alias="CAPTION_MIN_FRAME_CHARS")
    embed_timeout_seconds: int = Field(60, alias="EMBED_TIMEOUT_SECONDS")

    # ── Stream memory ─────────────────────────────────────────────────────────

    # Lines of canonical summary / previous answer echoed into a context prompt
    context_max_lines: int = Field(3, ge=1, alias="CONTEXT_MAX_LINES")

    # Background canonical analyses allowed in flight across all streams
    analysis_max_concurrency: int = Field(2, ge=1, alias="ANALYSIS_MAX_CONCURRENCY")

    # False = every canonical analysis is awaited inline, whatever the interval
    async_novelty_enabled: bool = Field(True, alias="MEMORY_NOVELTY_ASYNC_V1")

    # Verbose per-frame logs are emitted every Nth process_frame call
    log_sample_rate: int = Field(1, ge=1, alias="MEMORY_LOG_SAMPLE_RATE")

    # Novelty gate. Disabled = every non-duplicate description updates memory
    similarity_threshold: float = Field(0.85, ge=0.0, le=1.0, alias="SIMILARITY_THRESHOLD")
    similarity_gate_enabled: bool = Field(False, alias="SIMILARITY_GATE_ENABLED")

    # Intervals at or below this are fire-and-forget; slower ones await the analysis
    fast_interval_seconds: float = Field(10, alias="FAST_INTERVAL_SECONDS")

    idle_timeout_seconds: float = Field(300, alias="IDLE_TIMEOUT_SECONDS")
    cleanup_interval_seconds: float = Field(300, alias="CLEANUP_INTERVAL_SECONDS")

    # Re-derive buffer capacity when a stream is re-initialized with a new interval
    resize_on_interval_change: bool = Field(True, alias="RESIZE_ON_INTERVAL_CHANGE")

    # ── Runner ────────────────────────────────────────────────────────────────

    video_input_path: str = Field("", alias="VIDEO_INPUT_PATH")
    camera_id: str = Field("cam1", alias="CAMERA_ID")
    analysis_interval_seconds: float = Field(30, gt=0, alias="ANALYSIS_INTERVAL_SECONDS")
    live_question: str = Field("Describe what is happening.", alias="LIVE_QUESTION")

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
