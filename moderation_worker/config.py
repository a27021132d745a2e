"""
Configuration management for the moderation worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values.
"""

import os
import logging
from typing import Dict, Any
from dataclasses import dataclass, field

logger = logging.getLogger("moderation_worker")

AI_PROVIDERS = ("openai", "gemini")


@dataclass
class WorkerConfig:
    """Configuration for the moderation worker"""

    # Object storage settings
    STORAGE_TYPE: str = "local"  # local, s3
    STORAGE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Job state / video repository settings
    STATE_STORE_TYPE: str = "memory"  # memory, postgres
    STATE_STORE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Extraction settings
    FRAME_INTERVAL_SEC: float = 5.0

    # Analysis settings
    MAX_CONCURRENT_ANALYSES: int = 10
    AI_PROVIDER: str = "openai"  # openai, gemini
    CLASSIFY_TIMEOUT_SEC: float = 120.0
    CLASSIFY_WITH_URLS: bool = False
    VISION_MODEL: str = "gpt-4o"
    OPENAI_BASE_URL: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash-lite"
    ENABLE_FALLBACK_CLASSIFICATION: bool = True

    # Step retry settings
    STEP_MAX_ATTEMPTS: int = 3
    STEP_BACKOFF_MS: int = 500
    STEP_BACKOFF_MULTIPLIER: float = 1.5
    STEP_MAX_BACKOFF_MS: int = 12000

    # Logging
    LOG_LEVEL: str = "INFO"

    # HTTP server
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8000

    # Data directory (scratch files, local storage, logs)
    DATA_DIR: str = "/app/data"

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Data directory first, local storage defaults depend on it
        config.DATA_DIR = os.getenv("DATA_DIR", "/app/data")

        # Storage configuration
        config.STORAGE_TYPE = os.getenv("STORAGE_TYPE", "local")
        config.STORAGE_CONFIG = cls._parse_storage_config(config.DATA_DIR)

        # State store configuration
        config.STATE_STORE_TYPE = os.getenv("STATE_STORE_TYPE", "memory")
        config.STATE_STORE_CONFIG = cls._parse_state_store_config()

        # Extraction settings
        config.FRAME_INTERVAL_SEC = float(os.getenv("FRAME_INTERVAL_SEC", "5"))

        # Analysis settings
        config.MAX_CONCURRENT_ANALYSES = int(os.getenv("MAX_CONCURRENT_ANALYSES", "10"))
        config.AI_PROVIDER = cls._parse_ai_provider()
        config.CLASSIFY_TIMEOUT_SEC = float(os.getenv("CLASSIFY_TIMEOUT_SEC", "120"))
        config.CLASSIFY_WITH_URLS = os.getenv("CLASSIFY_WITH_URLS", "false").lower() == "true"
        config.VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o")
        config.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "")
        config.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
        config.ENABLE_FALLBACK_CLASSIFICATION = os.getenv("ENABLE_FALLBACK_CLASSIFICATION", "true").lower() == "true"

        # Step retry settings
        config.STEP_MAX_ATTEMPTS = int(os.getenv("STEP_MAX_ATTEMPTS", "3"))
        config.STEP_BACKOFF_MS = int(os.getenv("STEP_BACKOFF_MS", "500"))
        config.STEP_BACKOFF_MULTIPLIER = float(os.getenv("STEP_BACKOFF_MULTIPLIER", "1.5"))
        config.STEP_MAX_BACKOFF_MS = int(os.getenv("STEP_MAX_BACKOFF_MS", "12000"))

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # HTTP server
        config.HTTP_HOST = os.getenv("WORKER_HTTP_HOST", "0.0.0.0")
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))

        return config

    @classmethod
    def _parse_ai_provider(cls) -> str:
        """Classification provider, openai unless a valid one is named"""
        provider = os.getenv("AI_PROVIDER", "").strip().lower()
        if not provider:
            return "openai"
        if provider not in AI_PROVIDERS:
            logger.warning(f"Invalid AI_PROVIDER value '{provider}', defaulting to openai")
            return "openai"
        return provider

    @classmethod
    def _parse_storage_config(cls, data_dir: str) -> Dict[str, Any]:
        """Parse object storage specific configuration"""
        storage_type = os.getenv("STORAGE_TYPE", "local")

        if storage_type == "s3":
            return {
                "bucket": os.getenv("AWS_S3_BUCKET"),
                "region": os.getenv("AWS_REGION", "us-east-1"),
                "prefix": os.getenv("S3_PREFIX", "video-moderation/"),
                "public_acl": os.getenv("S3_PUBLIC_ACL", "false").lower() == "true"
            }
        elif storage_type == "local":
            return {
                "base_dir": os.getenv("LOCAL_STORAGE_DIR", os.path.join(data_dir, "blobs")),
                "base_url": os.getenv("LOCAL_STORAGE_URL", "/blobs")
            }
        else:
            return {}

    @classmethod
    def _parse_state_store_config(cls) -> Dict[str, Any]:
        """Parse job store / repository specific configuration"""
        state_store_type = os.getenv("STATE_STORE_TYPE", "memory")

        if state_store_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        else:
            return {}

    @property
    def scratch_dir(self) -> str:
        """Directory for downloaded sources and decoded frames"""
        return os.path.join(self.DATA_DIR, "scratch")

    @property
    def google_api_key(self) -> str:
        return os.getenv("GOOGLE_API_KEY") or os.getenv("GOOGLE_GENERATIVE_AI_API_KEY", "")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.DATA_DIR, "logs")

    def validate(self) -> None:
        """Validate configuration and raise errors for missing required values"""
        required_vars = []

        if self.STORAGE_TYPE not in ("local", "s3"):
            raise ValueError(f"Unsupported storage type: {self.STORAGE_TYPE}")

        if self.STATE_STORE_TYPE not in ("memory", "postgres"):
            raise ValueError(f"Unsupported state store type: {self.STATE_STORE_TYPE}")

        if self.STORAGE_TYPE == "s3" and not self.STORAGE_CONFIG.get("bucket"):
            required_vars.append("AWS_S3_BUCKET")

        if self.STATE_STORE_TYPE == "postgres" and not self.STATE_STORE_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")

        if self.AI_PROVIDER not in AI_PROVIDERS:
            raise ValueError(f"Unsupported AI provider: {self.AI_PROVIDER}")

        # Credentials of the selected classification model
        if self.AI_PROVIDER == "gemini":
            if not self.google_api_key:
                required_vars.append("GOOGLE_API_KEY")
        elif not os.getenv("OPENAI_API_KEY"):
            required_vars.append("OPENAI_API_KEY")

        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")

        if self.MAX_CONCURRENT_ANALYSES < 1:
            raise ValueError("MAX_CONCURRENT_ANALYSES must be at least 1")

        if self.FRAME_INTERVAL_SEC <= 0:
            raise ValueError("FRAME_INTERVAL_SEC must be positive")
