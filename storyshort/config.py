from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORYSHORT_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "storyshort"
    host: str = "0.0.0.0"
    port: int = 8100

    run_stages_inline: bool = False

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_progress_topic: str = "video_progress"

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "storyshort-renders"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str = "virtual"
    storage_folder_prefix: str = "videos"

    # Script and storyboard LLM
    llm_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "anthropic/claude-3.5-sonnet"
    llm_timeout: float = 60.0
    max_scenes: int = 8

    # Image generation
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1792"
    fallback_image_model: str = "dall-e-2"
    fallback_image_size: str = "1024x1024"
    image_timeout: float = 60.0

    # Narration
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    tts_timeout: float = 120.0
    whisper_local_model: str = "base"

    # Scene timing
    min_scene_seconds: float = 1.5
    default_scene_seconds: float = 3.0
    duration_tolerance_seconds: float = 0.25

    # Compositor
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    compositor_timeout: float = 600.0
    video_width: int = 1080
    video_height: int = 1920
    video_fps: int = 30
    video_crf: int = 23
    video_preset: str = "fast"
    audio_bitrate: str = "128k"
    render_workdir: str | None = None

    progress_poll_interval: float = 1.0
    progress_missing_max_polls: int = 30


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
