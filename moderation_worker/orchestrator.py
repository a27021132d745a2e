"""
Pipeline orchestration and execution management.

Runs one uploaded video through upload, extraction, bounded analysis and
cleanup, persisting the stage at every transition and streaming progress
to the caller. Every side effect runs as a journaled step, so a job that
is run again after a crash resumes where it stopped.
"""

import asyncio
import mimetypes
import time
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from .adapters.base import JobStore, StorageAdapter, VideoRepository
from .config import WorkerConfig
from .events import JobComplete, JobError, JobResult, ProgressUpdate, WireModel
from .exceptions import CleanupError, JobStateError, StreamWriteError
from .library import calculate_video_rating, generate_video_id, result_to_video_record
from .logging_setup import log_exception
from .models import FrameRef, JobStage, VideoJob, utcnow
from .pipeline.frames import FrameExtractor
from .pipeline.moderation import FrameAnalyzer
from .pipeline.scheduler import BoundedScheduler, ScheduleOutcome
from .pipeline.util import clean_filename
from .pipeline.vision import ContentClassifier
from .streaming import ProgressStreamWriter
from .workflow import StepRunner

logger = logging.getLogger("moderation_worker")

# Share of overall progress reached when each stage is done
PERCENT_STARTED = 5
PERCENT_UPLOADED = 20
PERCENT_EXTRACTED = 40
PERCENT_ANALYZED = 90
PERCENT_CLEANUP = 95


def _encode_frames(frames: List[FrameRef]) -> List[Dict[str, Any]]:
    return [frame.to_dict() for frame in frames]


def _decode_frames(data: List[Dict[str, Any]]) -> List[FrameRef]:
    return [FrameRef.from_dict(item) for item in data]


def _encode_result(result: JobResult) -> Dict[str, Any]:
    return result.model_dump(mode="json", by_alias=True)


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""

    def __init__(
        self,
        config: WorkerConfig,
        storage: StorageAdapter,
        job_store: JobStore,
        classifier: ContentClassifier,
        repository: Optional[VideoRepository] = None,
        extractor: Optional[FrameExtractor] = None
    ):
        self.config = config
        self.storage = storage
        self.job_store = job_store
        self.repository = repository
        self.extractor = extractor or FrameExtractor(
            storage,
            config.scratch_dir,
            interval_sec=config.FRAME_INTERVAL_SEC
        )
        self.analyzer = FrameAnalyzer(
            classifier,
            storage,
            timeout_sec=config.CLASSIFY_TIMEOUT_SEC,
            classify_with_urls=config.CLASSIFY_WITH_URLS
        )
        self.stats = {
            'jobs_processed': 0,
            'jobs_failed': 0,
            'cleanup_failures': 0,
            'total_processing_time': 0.0,
            'start_time': datetime.now()
        }

    async def run(self, job: VideoJob, writer: ProgressStreamWriter) -> JobResult:
        """
        Execute the complete moderation pipeline for one video.

        Exactly one terminal event (complete or error) is written to the
        stream, and it is the last event of the job.

        Args:
            job: Job to process
            writer: Progress stream of the caller

        Returns:
            JobResult with the incidents found

        Raises:
            JobStateError: the job already finished in an earlier run
            Exception: whatever aborted the job, after the error event was sent
        """
        start_time = time.time()

        record = await asyncio.to_thread(self.job_store.create_job, job.id, job.filename)
        if record.stage.is_terminal:
            raise JobStateError(f"Job {job.id} already finished with stage '{record.stage.value}'")

        runner = StepRunner(
            job.id,
            self.job_store,
            max_attempts=self.config.STEP_MAX_ATTEMPTS,
            backoff_ms=self.config.STEP_BACKOFF_MS,
            backoff_multiplier=self.config.STEP_BACKOFF_MULTIPLIER,
            max_backoff_ms=self.config.STEP_MAX_BACKOFF_MS
        )
        await runner.load()

        async def emit(key: str, event: WireModel) -> None:
            # Emissions are single-attempt steps; a broken channel never fails the job
            try:
                await runner.run(key, writer.append, event, max_attempts=1)
            except StreamWriteError as e:
                logger.warning(f"Job {job.id}: could not write {event.type} event: {e}")

        source_url: Optional[str] = None
        terminal_emitted = False

        try:
            logger.info(f"Executing pipeline for job {job.id}, video {job.filename} ({job.size_bytes} bytes)")

            await emit("emit:started", ProgressUpdate(
                step="started",
                message="Starting video processing",
                percent=PERCENT_STARTED
            ))

            # Upload
            source_url = await runner.run(
                "upload-video",
                self.storage.put,
                f"videos/{clean_filename(job.filename)}",
                job.source,
                content_type=mimetypes.guess_type(job.filename)[0] or "video/mp4",
                public=True,
                unique_suffix=True
            )
            await self._update_stage(job.id, JobStage.UPLOADED)
            await emit("emit:uploaded", ProgressUpdate(
                step="uploaded",
                message="Video uploaded to storage",
                percent=PERCENT_UPLOADED
            ))

            # Extraction
            frames = await runner.run(
                "extract-frames",
                self.extractor.extract,
                source_url,
                job.filename,
                encode=_encode_frames,
                decode=_decode_frames
            )
            await self._update_stage(job.id, JobStage.EXTRACTED)
            await emit("emit:extracted", ProgressUpdate(
                step="extracted",
                message=f"Extracted {len(frames)} frames",
                percent=PERCENT_EXTRACTED,
                total_frames=len(frames)
            ))

            # Analysis
            await self._update_stage(job.id, JobStage.ANALYZING)
            scheduler = BoundedScheduler(
                self.analyzer,
                runner,
                emit,
                max_concurrent=self.config.MAX_CONCURRENT_ANALYSES,
                percent_range=(PERCENT_EXTRACTED, PERCENT_ANALYZED),
                fallback_enabled=self.config.ENABLE_FALLBACK_CLASSIFICATION
            )
            outcome = await scheduler.run(frames)

            # Cleanup
            await self._update_stage(job.id, JobStage.CLEANUP)
            await emit("emit:cleanup", ProgressUpdate(
                step="cleanup",
                message="Cleaning up temporary files",
                percent=PERCENT_CLEANUP
            ))
            await self._delete_source(runner, job.id, source_url)
            source_url = None

            result = await runner.run(
                "save-result",
                self._save_result,
                job,
                outcome,
                encode=_encode_result,
                decode=JobResult.model_validate
            )

            # The terminal event goes out before the stage becomes terminal
            terminal_emitted = True
            await emit("emit:complete", JobComplete(result=result))
            await self._update_stage(job.id, JobStage.COMPLETE)

            processing_time = time.time() - start_time
            self.stats['jobs_processed'] += 1
            self.stats['total_processing_time'] += processing_time
            logger.info(
                f"Pipeline completed for job {job.id} in {processing_time:.2f}s: "
                f"{len(result.incidents)} incidents in {result.total_frames} frames "
                f"({runner.stats['executed']} steps executed, {runner.stats['replayed']} replayed)"
            )
            return result

        except Exception as e:
            error_msg = str(e) or e.__class__.__name__
            log_exception(logger, f"Pipeline failed for job {job.id}: {error_msg}")
            self.stats['jobs_failed'] += 1

            if not terminal_emitted:
                terminal_emitted = True
                await emit("emit:error", JobError(message=error_msg))

            if source_url is not None:
                await self._delete_source(runner, job.id, source_url)
                source_url = None

            try:
                await self._update_stage(job.id, JobStage.ERROR, error=error_msg)
            except Exception as store_error:
                log_exception(logger, f"Error marking job {job.id} as failed: {store_error}")

            raise

    def _save_result(self, job: VideoJob, outcome: ScheduleOutcome) -> JobResult:
        """Build the final result and keep it in the video repository"""
        video_id = generate_video_id() if self.repository is not None else None
        metadata: Dict[str, Any] = {
            'jobId': job.id,
            'filename': job.filename,
            'sizeBytes': job.size_bytes,
            'intervalSeconds': self.config.FRAME_INTERVAL_SEC,
            'degradedFrames': outcome.degraded_frames,
            'overallRating': calculate_video_rating(outcome.incidents)
        }
        if video_id:
            metadata["videoId"] = video_id

        result = JobResult(
            incidents=outcome.incidents,
            total_frames=outcome.total_frames,
            processed_at=utcnow(),
            metadata=metadata
        )

        if self.repository is not None:
            video = result_to_video_record(result, job.filename, video_id=video_id)
            self.repository.save(video)
            logger.info(f"Saved video {video.id} for job {job.id} ({video.severity} severity, {video.flag_count} flags)")

        return result

    async def _delete_source(self, runner: StepRunner, job_id: str, source_url: str) -> None:
        """Delete the uploaded source video, logging failures"""
        try:
            await runner.run("delete-source", self.storage.delete, source_url)
        except Exception as e:
            self.stats['cleanup_failures'] += 1
            error = CleanupError(f"Failed to delete source video {source_url}: {e}")
            logger.warning(f"Job {job_id}: {error}")

    async def _update_stage(self, job_id: str, stage: JobStage, error: Optional[str] = None) -> None:
        await asyncio.to_thread(self.job_store.update_stage, job_id, stage, error)
        logger.debug(f"Job {job_id} stage: {stage.value}")

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        uptime = (datetime.now() - self.stats['start_time']).total_seconds()
        finished = self.stats['jobs_processed'] + self.stats['jobs_failed']
        avg_processing_time = (
            self.stats['total_processing_time'] / self.stats['jobs_processed']
            if self.stats['jobs_processed'] > 0 else 0
        )

        return {
            'jobs_processed': self.stats['jobs_processed'],
            'jobs_failed': self.stats['jobs_failed'],
            'cleanup_failures': self.stats['cleanup_failures'],
            'total_processing_time': self.stats['total_processing_time'],
            'average_processing_time': avg_processing_time,
            'uptime_seconds': uptime,
            'success_rate': self.stats['jobs_processed'] / finished if finished > 0 else 0
        }
