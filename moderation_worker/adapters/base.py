"""
Abstract base classes for storage, job state and video repository adapters.

Defines the interface that all adapters must implement, enabling
easy swapping between object storage backends (S3, local disk) and
state backends (in-memory, Postgres).
"""

import os
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

from ..models import JobRecord, JobStage
from ..library import VideoRecord


class StorageAdapter(ABC):
    """Abstract base class for object storage adapters"""

    def connect(self) -> None:
        """Open client connections, if the backend needs any"""
        pass

    def close(self) -> None:
        """Release client connections"""
        pass

    @abstractmethod
    def put(self, name: str, data: bytes, content_type: str,
            public: bool = True, unique_suffix: bool = True) -> str:
        """
        Store an object.

        Args:
            name: Object name, may contain "/" separated prefixes
            data: Object content
            content_type: MIME type of the content
            public: Whether the object should be publicly readable
            unique_suffix: Append a random suffix so repeated puts never collide

        Returns:
            URL of the stored object
        """
        pass

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """
        Read an object back.

        Args:
            url: URL returned by put()

        Returns:
            Object content
        """
        pass

    @abstractmethod
    def delete(self, url: str) -> None:
        """
        Delete an object.

        Args:
            url: URL returned by put()
        """
        pass


class JobStore(ABC):
    """Abstract base class for durable job state and step journals"""

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    @abstractmethod
    def create_job(self, job_id: str, filename: str) -> JobRecord:
        """
        Create a job record, or return the existing one for a resumed job.

        Args:
            job_id: ID of the job
            filename: Original filename of the uploaded video

        Returns:
            The stored job record
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """
        Get a job record with its step journal.

        Returns:
            JobRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def update_stage(self, job_id: str, stage: JobStage, error: Optional[str] = None) -> None:
        """
        Persist a stage transition.

        Args:
            job_id: ID of the job
            stage: Stage the job has reached
            error: Error message when the stage is ERROR
        """
        pass

    @abstractmethod
    def record_step(self, job_id: str, key: str, result: Any) -> None:
        """
        Journal the JSON-serializable result of a completed step.

        Args:
            job_id: ID of the job
            key: Step key, unique within the job
            result: Result to return when the step is replayed
        """
        pass

    @abstractmethod
    def get_steps(self, job_id: str) -> Dict[str, Any]:
        """
        Get the step journal of a job.

        Returns:
            Mapping of step key to recorded result
        """
        pass

    @abstractmethod
    def delete_job(self, job_id: str) -> bool:
        """
        Delete a job and its journal.

        Returns:
            True if the job existed
        """
        pass


class VideoRepository(ABC):
    """Abstract base class for moderated video records"""

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    @abstractmethod
    def save(self, video: VideoRecord) -> None:
        """
        Insert or replace a video record.

        Args:
            video: Record to store
        """
        pass

    @abstractmethod
    def get(self, video_id: str) -> Optional[VideoRecord]:
        """
        Get a video record by ID.

        Returns:
            VideoRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def list(self) -> List[VideoRecord]:
        """
        List all video records, newest first.

        Returns:
            List of video records
        """
        pass

    @abstractmethod
    def update_status(self, video_id: str, status: str) -> bool:
        """
        Change the review status of a video.

        Returns:
            True if the video was found
        """
        pass

    @abstractmethod
    def delete(self, video_id: str) -> bool:
        """
        Delete a video record.

        Returns:
            True if the video was found
        """
        pass


def with_unique_suffix(name: str) -> str:
    """Insert a random suffix before the extension: frames/a.jpg -> frames/a-<hex>.jpg"""
    stem, ext = os.path.splitext(name)
    return f"{stem}-{uuid.uuid4().hex[:16]}{ext}"
