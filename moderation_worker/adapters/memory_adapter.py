"""
In-memory job store and video repository.

Used for development and tests. Journaled step results are stored as
JSON copies so they behave exactly like the durable backends.
"""

import json
import logging
import threading
from typing import Optional, Dict, Any, List

from .base import JobStore, VideoRepository
from ..models import JobRecord, JobStage, utcnow
from ..library import VideoRecord

logger = logging.getLogger("moderation_worker")


class MemoryJobStore(JobStore):
    """In-memory implementation of the job store"""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create_job(self, job_id: str, filename: str) -> JobRecord:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                job = JobRecord(id=job_id, filename=filename)
                self._jobs[job_id] = job
                logger.debug(f"Created job {job_id}")
            return self._copy(job)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    def update_stage(self, job_id: str, stage: JobStage, error: Optional[str] = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(f"Job {job_id} not found")
            job.stage = stage
            job.error = error
            job.updated_at = utcnow()

    def record_step(self, job_id: str, key: str, result: Any) -> None:
        encoded = json.dumps(result)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(f"Job {job_id} not found")
            job.steps[key] = json.loads(encoded)
            job.updated_at = utcnow()

    def get_steps(self, job_id: str) -> Dict[str, Any]:
        with self._lock:
            job = self._jobs.get(job_id)
            return json.loads(json.dumps(job.steps)) if job else {}

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def _copy(self, job: JobRecord) -> JobRecord:
        return JobRecord(
            id=job.id,
            filename=job.filename,
            stage=job.stage,
            created_at=job.created_at,
            updated_at=job.updated_at,
            error=job.error,
            steps=json.loads(json.dumps(job.steps))
        )


class MemoryVideoRepository(VideoRepository):
    """In-memory implementation of the video repository"""

    def __init__(self):
        self._videos: Dict[str, VideoRecord] = {}
        self._order: List[str] = []
        self._lock = threading.Lock()

    def save(self, video: VideoRecord) -> None:
        with self._lock:
            if video.id not in self._videos:
                # Newest first
                self._order.insert(0, video.id)
            self._videos[video.id] = video

    def get(self, video_id: str) -> Optional[VideoRecord]:
        with self._lock:
            return self._videos.get(video_id)

    def list(self) -> List[VideoRecord]:
        with self._lock:
            return [self._videos[video_id] for video_id in self._order]

    def update_status(self, video_id: str, status: str) -> bool:
        with self._lock:
            video = self._videos.get(video_id)
            if video is None:
                return False
            self._videos[video_id] = video.model_copy(update={'status': status})
            return True

    def delete(self, video_id: str) -> bool:
        with self._lock:
            if self._videos.pop(video_id, None) is None:
                return False
            self._order.remove(video_id)
            return True
