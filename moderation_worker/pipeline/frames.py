import math
import os
import shutil
import uuid
import ffmpeg
import logging
from typing import Callable, List, Optional

from ..adapters.base import StorageAdapter
from ..exceptions import DownloadError, ExtractionError, IntegrityError, StorageError
from ..models import FrameRef
from .util import clean_filename, ensure_dir

logger = logging.getLogger("moderation_worker")

FRAME_PATTERN = "frame-%04d.jpg"

# (video_path, output_dir, interval_sec) -> None, writes FRAME_PATTERN files
FrameDecoder = Callable[[str, str, float], None]

# video_path -> duration in seconds, None when unknown
DurationProbe = Callable[[str], Optional[float]]


def ffmpeg_decode_frames(video_path: str, output_dir: str, interval_sec: float) -> None:
    """Sample one JPEG frame every interval_sec seconds with ffmpeg"""
    output_pattern = os.path.join(output_dir, FRAME_PATTERN)
    try:
        (
            ffmpeg
            .input(video_path)
            .filter('fps', fps=f"1/{interval_sec:g}")
            .output(output_pattern, format='image2', vcodec='mjpeg')
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors='replace') if e.stderr else str(e)
        raise ExtractionError(f"FFmpeg frame extraction failed: {stderr.strip()}") from e
    except FileNotFoundError as e:
        raise ExtractionError("ffmpeg executable not found") from e


def ffprobe_duration(video_path: str) -> Optional[float]:
    """Get video duration in seconds, None if ffprobe cannot tell"""
    try:
        probe = ffmpeg.probe(video_path)
    except (ffmpeg.Error, FileNotFoundError) as e:
        logger.warning(f"Could not probe duration of {video_path}: {e}")
        return None

    duration = probe.get('format', {}).get('duration')
    if duration is None:
        video_stream = next((s for s in probe.get('streams', []) if s.get('codec_type') == 'video'), None)
        duration = video_stream.get('duration') if video_stream else None

    try:
        return float(duration) if duration is not None else None
    except ValueError:
        return None


def expected_frame_count(duration: Optional[float], interval_sec: float) -> Optional[int]:
    """One frame per started interval: 30s at 5s -> 6, 31s at 5s -> 7"""
    if duration is None or duration <= 0:
        return None
    return int(math.ceil(round(duration / interval_sec, 6)))


class FrameExtractor:
    """Downloads a source video, samples frames and persists each one to storage"""

    def __init__(
        self,
        storage: StorageAdapter,
        scratch_dir: str,
        interval_sec: float = 5.0,
        decoder: Optional[FrameDecoder] = None,
        probe: Optional[DurationProbe] = None
    ):
        self.storage = storage
        self.scratch_dir = scratch_dir
        self.interval_sec = interval_sec
        self.decoder = decoder or ffmpeg_decode_frames
        self.probe = probe or ffprobe_duration

    def extract(self, source_url: str, filename: str) -> List[FrameRef]:
        """
        Extract frames from the video stored at source_url.

        Every frame is uploaded as soon as it is read and removed from disk,
        so at most one frame is held in memory. Local files are removed on
        both success and failure.

        Returns:
            FrameRefs in chronological order

        Raises:
            DownloadError: the source could not be fetched
            IntegrityError: the local copy is not the size of the fetched content
            ExtractionError: the decoder failed
        """
        run_id = uuid.uuid4().hex[:12]
        work_dir = os.path.join(self.scratch_dir, f"job-{run_id}")
        video_path = os.path.join(work_dir, f"{run_id}-{clean_filename(filename)}")
        frames_dir = os.path.join(work_dir, "frames")

        try:
            ensure_dir(frames_dir)

            self._download(source_url, video_path)

            self.decoder(video_path, frames_dir, self.interval_sec)

            frame_files = sorted(
                name for name in os.listdir(frames_dir)
                if name.lower().endswith(('.jpg', '.jpeg'))
            )

            limit = expected_frame_count(self.probe(video_path), self.interval_sec)
            if limit is not None and len(frame_files) > limit:
                logger.debug(f"Dropping {len(frame_files) - limit} trailing frame(s) past the end of {filename}")
                frame_files = frame_files[:limit]

            frames = []
            for index, frame_file in enumerate(frame_files):
                frames.append(self._persist_frame(frames_dir, frame_file, index, filename))

            logger.info(f"Extracted {len(frames)} frames from {filename} every {self.interval_sec:g}s")
            return frames

        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _download(self, source_url: str, video_path: str) -> None:
        """Fetch the source and write it to disk, verifying the written size"""
        try:
            content = self.storage.fetch(source_url)
        except StorageError as e:
            raise DownloadError(f"Failed to download video: {e}") from e

        expected = len(content)
        with open(video_path, 'wb') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        # Release the source buffer before decoding
        del content

        written = os.path.getsize(video_path)
        logger.info(f"Video downloaded: {written} bytes (expected: {expected})")
        if written != expected:
            raise IntegrityError(written, expected)

    def _persist_frame(self, frames_dir: str, frame_file: str, index: int, source_name: str) -> FrameRef:
        frame_path = os.path.join(frames_dir, frame_file)

        with open(frame_path, 'rb') as f:
            data = f.read()

        stem = os.path.splitext(clean_filename(source_name))[0]
        url = self.storage.put(
            f"frames/{stem}-{frame_file}",
            data,
            content_type="image/jpeg",
            public=True,
            unique_suffix=True
        )
        os.remove(frame_path)

        return FrameRef(
            index=index,
            url=url,
            timestamp=index * self.interval_sec,
            filename=frame_file
        )
