"""
Postgres adapter implementations for the job store and video repository.

Records are kept as JSONB documents keyed by id; the tables are created
on connect if they do not exist yet.
"""

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool
from typing import Optional, Dict, Any, List
import logging

from .base import JobStore, VideoRepository
from ..models import JobRecord, JobStage
from ..library import VideoRecord
from ..logging_setup import log_exception

logger = logging.getLogger("moderation_worker")


SCHEMA = """
CREATE TABLE IF NOT EXISTS moderation_jobs (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    stage TEXT NOT NULL,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS moderation_job_steps (
    job_id TEXT NOT NULL REFERENCES moderation_jobs(id) ON DELETE CASCADE,
    step_key TEXT NOT NULL,
    result JSONB,
    recorded_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (job_id, step_key)
);

CREATE TABLE IF NOT EXISTS moderated_videos (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    record JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


class PostgresAdapter:
    """Shared connection pool handling"""

    application_name = "moderation_worker"

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = ConnectionPool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                kwargs={
                    "connect_timeout": self.timeout,
                    "application_name": self.application_name
                }
            )
            logger.info(f"Postgres connection pool initialized for {self.application_name}")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres: {e}")
            raise

    def _bootstrap_schema(self):
        """Create tables if needed"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA)
                conn.commit()
                logger.info("Postgres schema validated")

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            self.pool = None
            logger.info(f"Postgres connection pool closed for {self.application_name}")


class PostgresJobStore(PostgresAdapter, JobStore):
    """Postgres implementation of the job store"""

    application_name = "moderation_worker_jobs"

    def create_job(self, job_id: str, filename: str) -> JobRecord:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO moderation_jobs (id, filename, stage)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                """, (job_id, filename, JobStage.START.value))
                conn.commit()
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    SELECT id, filename, stage, error, created_at, updated_at
                    FROM moderation_jobs WHERE id = %s
                """, (job_id,))
                row = cur.fetchone()
                if not row:
                    return None

                cur.execute("""
                    SELECT step_key, result FROM moderation_job_steps WHERE job_id = %s
                """, (job_id,))
                steps = {step['step_key']: step['result'] for step in cur.fetchall()}

                return JobRecord(
                    id=row['id'],
                    filename=row['filename'],
                    stage=JobStage(row['stage']),
                    created_at=row['created_at'],
                    updated_at=row['updated_at'],
                    error=row['error'],
                    steps=steps
                )

    def update_stage(self, job_id: str, stage: JobStage, error: Optional[str] = None) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE moderation_jobs
                    SET stage = %s, error = %s, updated_at = now()
                    WHERE id = %s
                """, (stage.value, error, job_id))
                if cur.rowcount == 0:
                    raise KeyError(f"Job {job_id} not found")
                conn.commit()

    def record_step(self, job_id: str, key: str, result: Any) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO moderation_job_steps (job_id, step_key, result)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (job_id, step_key) DO UPDATE SET result = EXCLUDED.result
                """, (job_id, key, Jsonb(result)))
                conn.commit()

    def get_steps(self, job_id: str) -> Dict[str, Any]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT step_key, result FROM moderation_job_steps WHERE job_id = %s
                """, (job_id,))
                return {row[0]: row[1] for row in cur.fetchall()}

    def delete_job(self, job_id: str) -> bool:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM moderation_jobs WHERE id = %s", (job_id,))
                deleted = cur.rowcount > 0
                conn.commit()
                return deleted


class PostgresVideoRepository(PostgresAdapter, VideoRepository):
    """Postgres implementation of the video repository"""

    application_name = "moderation_worker_videos"

    def save(self, video: VideoRecord) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO moderated_videos (id, status, record)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status, record = EXCLUDED.record
                """, (video.id, video.status, Jsonb(video.model_dump(mode='json'))))
                conn.commit()
                logger.info(f"Saved video record {video.id}")

    def get(self, video_id: str) -> Optional[VideoRecord]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT record FROM moderated_videos WHERE id = %s", (video_id,))
                row = cur.fetchone()
                return VideoRecord.model_validate(row[0]) if row else None

    def list(self) -> List[VideoRecord]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT record FROM moderated_videos ORDER BY created_at DESC")
                return [VideoRecord.model_validate(row[0]) for row in cur.fetchall()]

    def update_status(self, video_id: str, status: str) -> bool:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE moderated_videos
                    SET status = %s, record = jsonb_set(record, '{status}', to_jsonb(%s::text))
                    WHERE id = %s
                """, (status, status, video_id))
                updated = cur.rowcount > 0
                conn.commit()
                return updated

    def delete(self, video_id: str) -> bool:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM moderated_videos WHERE id = %s", (video_id,))
                deleted = cur.rowcount > 0
                conn.commit()
                return deleted
