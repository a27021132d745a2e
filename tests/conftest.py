import pytest

from moderation_worker.adapters.memory_adapter import MemoryJobStore, MemoryVideoRepository
from moderation_worker.config import WorkerConfig

from .fakes import FakeClassifier, FakeStorage


@pytest.fixture
def config(tmp_path):
    return WorkerConfig(
        DATA_DIR=str(tmp_path / "data"),
        STEP_MAX_ATTEMPTS=3,
        STEP_BACKOFF_MS=0,
        CLASSIFY_TIMEOUT_SEC=5.0
    )


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def repository():
    return MemoryVideoRepository()


@pytest.fixture
def classifier():
    return FakeClassifier()
