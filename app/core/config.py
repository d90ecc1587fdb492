from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_NAME: str = "Image Tagger Worker"
    APP_VERSION: str = "0.1.0"
    DEBUG_MODE: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text" # "text" or "json"

    # MinIO Configuration
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "YOUR_MINIO_ACCESS_KEY"
    MINIO_SECRET_KEY: str = "YOUR_MINIO_SECRET_KEY"
    MINIO_BUCKET_NAME: str = "images"
    MINIO_USE_SSL: bool = False

    # SQL Database Configuration (SQLAlchemy)
    DATABASE_URL: str = "sqlite:///./instance/image_tagger.db"

    # Vision model (tag generation), OpenAI-compatible chat completions endpoint
    VISION_API_KEY: str = "YOUR_VISION_API_KEY"
    VISION_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    VISION_MODEL_NAME: str = "gemini-2.5-flash-lite"
    VISION_REQUEST_TIMEOUT: int = 60
    VISION_MAX_TOKENS: int = 4096
    VISION_TEMPERATURE: float = 0.1
    VISION_DEBUG_MODE: bool = False

    # Embedding model (Cohere v2 embed API)
    EMBEDDING_API_KEY: str = "YOUR_EMBEDDING_API_KEY"
    EMBEDDING_API_BASE_URL: str = "https://api.cohere.com/v2"
    EMBEDDING_MODEL_NAME: str = "embed-english-v3.0"
    EMBEDDING_DIMENSION: int = 1024 # embed-english-v3.0 outputs 1024 dimensions
    EMBEDDING_REQUEST_TIMEOUT: int = 60

    # Cost estimate, USD per 1M tokens
    COST_PER_MILLION_PROMPT_TOKENS: float = 0.075
    COST_PER_MILLION_COMPLETION_TOKENS: float = 0.30
    COST_PER_MILLION_CACHED_TOKENS: float = 0.01875

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    APP_TIMEZONE: str = "UTC"

    # Batch processing
    BATCH_MAX_SIZE: int = 10 # Images claimed per batch run
    BATCH_MAX_QUEUED_JOBS: int = 5 # Do not re-dispatch when this many jobs are already queued
    IMAGE_PROCESSING_QUEUE: str = "image_processing_queue"
    BATCH_TASK_TIME_LIMIT_SECONDS: int = 300

    # Image metadata
    THUMBNAIL_MAX_EDGE: int = 384
    THUMBNAIL_PREFIX: str = "thumbnails"
    UPLOAD_PREFIX: str = "images"

    # Orphan sweep
    ORPHAN_THRESHOLD_MINUTES: int = 15
    BEAT_SCHEDULE_ORPHAN_SWEEP_MINUTES: int = 15
    ORPHAN_SWEEP_DISPATCH: bool = True

    # Search defaults
    SEARCH_DEFAULT_LIMIT: int = 10
    SEARCH_DEFAULT_MIN_SIMILARITY: float = 0.7

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
