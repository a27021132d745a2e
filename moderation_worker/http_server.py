import asyncio
import logging
from typing import Optional, Set, TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .adapters.local_adapter import LocalStorageAdapter
from .library import VIDEO_STATUSES
from .logging_setup import log_exception
from .models import VideoJob
from .streaming import ProgressStreamWriter, QueueChannel

if TYPE_CHECKING:
    from .service import WorkerService

logger = logging.getLogger("moderation_worker")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive"
}


class StatusUpdate(BaseModel):
    status: str


class HttpServer:
    def __init__(self, service: 'WorkerService'):
        self.service = service
        self.app = FastAPI(title="Video Moderation Worker API")
        self._tasks: Set[asyncio.Task] = set()
        self.setup_routes()
        self._mount_local_storage()

    def setup_routes(self):
        """Setup API routes"""

        @self.app.post("/api/upload-video")
        async def upload_video(video: Optional[UploadFile] = File(None)):
            """Accept a video and stream processing progress as JSON lines"""
            if video is None or not video.filename:
                raise HTTPException(status_code=400, detail="No video file provided")

            try:
                data = await video.read()
                job = VideoJob(filename=video.filename, source=data)
                channel = QueueChannel()
                writer = ProgressStreamWriter(channel)

                task = asyncio.create_task(self._run_job(job, writer))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            except Exception as e:
                log_exception(logger, f"Failed to start processing of {video.filename}: {e}")
                raise HTTPException(status_code=500, detail="Failed to start video processing")

            logger.info(f"Accepted upload {video.filename} ({job.size_bytes} bytes) as job {job.id}")
            return StreamingResponse(channel, media_type="text/event-stream", headers=STREAM_HEADERS)

        @self.app.get("/api/videos")
        def list_videos():
            """List moderated videos, newest first"""
            videos = self.service.repository.list()
            return [video.model_dump(mode="json", by_alias=True) for video in videos]

        @self.app.get("/api/videos/{video_id}")
        def get_video(video_id: str):
            video = self.service.repository.get(video_id)
            if video is None:
                raise HTTPException(status_code=404, detail=f"Video {video_id} not found")
            return video.model_dump(mode="json", by_alias=True)

        @self.app.patch("/api/videos/{video_id}")
        def update_video_status(video_id: str, update: StatusUpdate):
            """Change the review status of a video"""
            if update.status not in VIDEO_STATUSES:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid status '{update.status}', expected one of: {', '.join(VIDEO_STATUSES)}"
                )
            if not self.service.repository.update_status(video_id, update.status):
                raise HTTPException(status_code=404, detail=f"Video {video_id} not found")
            return self.service.repository.get(video_id).model_dump(mode="json", by_alias=True)

        @self.app.delete("/api/videos/{video_id}")
        def delete_video(video_id: str):
            if not self.service.repository.delete(video_id):
                raise HTTPException(status_code=404, detail=f"Video {video_id} not found")
            return {"ok": True, "id": video_id}

        @self.app.get("/api/jobs/{job_id}")
        def get_job(job_id: str):
            """Persisted stage of a processing run"""
            job = self.service.job_store.get_job(job_id)
            if job is None:
                raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
            return job.to_dict()

        @self.app.get("/healthz")
        def health_check():
            """Health check endpoint"""
            return {
                "ok": True,
                "status": "healthy",
                "active_jobs": len(self._tasks),
                "stats": self.service.orchestrator.get_stats()
            }

    def _mount_local_storage(self):
        """Serve locally stored frames and screenshots"""
        storage = self.service.storage
        if isinstance(storage, LocalStorageAdapter) and storage.base_url.startswith("/"):
            self.app.mount(storage.base_url, StaticFiles(directory=storage.base_dir, check_dir=False), name="blobs")

    async def _run_job(self, job: VideoJob, writer: ProgressStreamWriter):
        """Run one job and close its stream when it ends"""
        try:
            await self.service.orchestrator.run(job, writer)
        except Exception as e:
            # The orchestrator already sent the error event
            logger.error(f"Job {job.id} ended with error: {str(e)}")
        finally:
            await writer.close()

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        """Serve the API in the current thread"""
        uvicorn.run(
            self.app,
            host=host,
            port=port,
            log_level="warning",  # Reduce uvicorn logging
            access_log=False
        )
