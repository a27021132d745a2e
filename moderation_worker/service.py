"""
Main worker service.

Builds the storage, job state and repository adapters selected by the
configuration, wires them into the pipeline orchestrator and serves the
HTTP API.
"""

import sys
import logging
from typing import Optional

from .config import WorkerConfig
from .adapters.base import JobStore, StorageAdapter, VideoRepository
from .adapters.local_adapter import LocalStorageAdapter
from .adapters.memory_adapter import MemoryJobStore, MemoryVideoRepository
from .adapters.postgres_adapter import PostgresJobStore, PostgresVideoRepository
from .adapters.s3_adapter import S3StorageAdapter
from .orchestrator import PipelineOrchestrator
from .pipeline.vision import ContentClassifier, GeminiClassifier, OpenAIClassifier
from .logging_setup import setup_logging, log_exception
from .http_server import HttpServer

logger = logging.getLogger("moderation_worker")


class WorkerService:
    """Main worker service with adapter-based architecture"""

    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        storage: Optional[StorageAdapter] = None,
        job_store: Optional[JobStore] = None,
        repository: Optional[VideoRepository] = None,
        classifier: Optional[ContentClassifier] = None
    ):
        self.config = config or WorkerConfig.from_env()
        self.storage = storage
        self.job_store = job_store
        self.repository = repository
        self.classifier = classifier
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.http_server: Optional[HttpServer] = None

    def initialize(self):
        """Initialize worker with adapters based on configuration"""
        try:
            # Setup logging
            setup_logging(self.config.LOG_LEVEL, self.config.log_dir)

            # Validate configuration
            self.config.validate()

            # Initialize adapters
            self._initialize_adapters()

            # Initialize orchestrator
            self.orchestrator = PipelineOrchestrator(
                self.config,
                self.storage,
                self.job_store,
                self.classifier,
                repository=self.repository
            )

            self.http_server = HttpServer(self)

            logger.info("Worker service initialized successfully")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _initialize_adapters(self):
        """Create and connect any adapter that was not injected"""
        if self.storage is None:
            self.storage = self._create_storage_adapter()
        self.storage.connect()

        if self.job_store is None:
            self.job_store = self._create_job_store()
        self.job_store.connect()

        if self.repository is None:
            self.repository = self._create_video_repository()
        self.repository.connect()

        if self.classifier is None:
            self.classifier = self._create_classifier()

        logger.info(
            f"Initialized adapters: {self.config.STORAGE_TYPE} storage, "
            f"{self.config.STATE_STORE_TYPE} state store, {self.config.AI_PROVIDER} classifier"
        )

    def _create_storage_adapter(self) -> StorageAdapter:
        """Create storage adapter based on configuration"""
        config = self.config.STORAGE_CONFIG

        if self.config.STORAGE_TYPE == "s3":
            return S3StorageAdapter(
                bucket=config["bucket"],
                region=config.get("region", "us-east-1"),
                prefix=config.get("prefix", "video-moderation/"),
                public_acl=config.get("public_acl", False)
            )

        elif self.config.STORAGE_TYPE == "local":
            return LocalStorageAdapter(
                base_dir=config["base_dir"],
                base_url=config.get("base_url", "/blobs")
            )

        else:
            raise ValueError(f"Unsupported storage type: {self.config.STORAGE_TYPE}")

    def _create_classifier(self) -> ContentClassifier:
        """Create content classifier based on configuration"""
        if self.config.AI_PROVIDER == "openai":
            return OpenAIClassifier(
                model=self.config.VISION_MODEL,
                base_url=self.config.OPENAI_BASE_URL or None
            )

        elif self.config.AI_PROVIDER == "gemini":
            return GeminiClassifier(
                model=self.config.GEMINI_MODEL,
                api_key=self.config.google_api_key or None
            )

        else:
            raise ValueError(f"Unsupported AI provider: {self.config.AI_PROVIDER}")

    def _create_job_store(self) -> JobStore:
        """Create job store based on configuration"""
        if self.config.STATE_STORE_TYPE == "postgres":
            config = self.config.STATE_STORE_CONFIG
            return PostgresJobStore(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        elif self.config.STATE_STORE_TYPE == "memory":
            return MemoryJobStore()

        else:
            raise ValueError(f"Unsupported state store type: {self.config.STATE_STORE_TYPE}")

    def _create_video_repository(self) -> VideoRepository:
        """Create video repository based on configuration"""
        if self.config.STATE_STORE_TYPE == "postgres":
            config = self.config.STATE_STORE_CONFIG
            return PostgresVideoRepository(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        elif self.config.STATE_STORE_TYPE == "memory":
            return MemoryVideoRepository()

        else:
            raise ValueError(f"Unsupported state store type: {self.config.STATE_STORE_TYPE}")

    def start(self):
        """Serve the HTTP API until interrupted"""
        logger.info(f"Starting moderation worker on {self.config.HTTP_HOST}:{self.config.HTTP_PORT}")
        self.http_server.run(self.config.HTTP_HOST, self.config.HTTP_PORT)

    def stop(self):
        """Release adapter connections"""
        for adapter in (self.repository, self.job_store, self.storage):
            if adapter is None:
                continue
            try:
                adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {adapter.__class__.__name__}: {e}")

        if self.orchestrator:
            stats = self.orchestrator.get_stats()
            logger.info(
                f"Worker stopped. Processed {stats['jobs_processed']} jobs, "
                f"{stats['jobs_failed']} failed"
            )


def main():
    """Main entry point"""
    worker = WorkerService()

    try:
        worker.initialize()
        worker.start()
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()
