"""
Streaming upload client.

Uploads a video to the worker and prints progress events as they arrive.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Callable, Dict, Optional

import httpx

from .events import FrameProcessed, JobComplete, JobError, JobResult, ProgressUpdate, WireModel
from .exceptions import ModerationError
from .logging_setup import setup_logging
from .pipeline.util import format_timestamp
from .stream_parser import StreamConsumer

logger = logging.getLogger("moderation_worker")

UPLOAD_PATH = "/api/upload-video"


async def upload_video(
    base_url: str,
    path: str,
    handlers: Optional[Dict[str, Callable[[WireModel], None]]] = None,
    timeout_sec: float = 600.0,
    client: Optional[httpx.AsyncClient] = None
) -> JobResult:
    """
    Upload a video and consume the progress stream until it ends.

    Args:
        base_url: Worker URL, e.g. http://localhost:8000
        path: Local video file
        handlers: Callables keyed by event type
        timeout_sec: Read timeout between chunks

    Returns:
        JobResult carried by the complete event

    Raises:
        JobFailedError: the worker reported an error event
        StreamTerminatedError: the stream closed without a terminal event
        httpx.HTTPStatusError: the upload was rejected
    """
    consumer = StreamConsumer(handlers)
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout_sec, connect=10.0))

    try:
        with open(path, "rb") as f:
            files = {"video": (os.path.basename(path), f, "video/mp4")}
            async with client.stream("POST", UPLOAD_PATH, files=files) as response:
                if response.status_code >= 400:
                    await response.aread()
                    response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    consumer.feed(chunk)
    finally:
        if owns_client:
            await client.aclose()

    return consumer.finish()


def _print_event(event: WireModel) -> None:
    if isinstance(event, ProgressUpdate):
        print(f"[{event.percent:3d}%] {event.message}")
    elif isinstance(event, FrameProcessed):
        print(f"[{event.percent:3d}%] Frame {event.current}/{event.total}")
    elif isinstance(event, JobComplete):
        print(f"[100%] {event.message}")
    elif isinstance(event, JobError):
        print(f"[ERR ] {event.message}")


def print_result(result: JobResult) -> None:
    print(f"\n{len(result.incidents)} incident(s) in {result.total_frames} frames")
    for incident in result.incidents:
        marker = " (degraded)" if incident.degraded else ""
        print(
            f"  {format_timestamp(incident.timestamp)}  {incident.rating:>4}  "
            f"{incident.confidence:.0%}  {incident.categories}{marker}"
        )
    degraded = result.metadata.get("degradedFrames") or []
    if degraded:
        print(f"Frames without a model verdict: {', '.join(str(i) for i in degraded)}")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Upload a video for content moderation")
    parser.add_argument("video", help="Path to the video file")
    parser.add_argument("--url", default=os.getenv("MODERATION_WORKER_URL", "http://localhost:8000"),
                        help="Worker base URL")
    parser.add_argument("--timeout", type=float, default=600.0, help="Read timeout in seconds")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))
    args = parser.parse_args()

    setup_logging(args.log_level)

    handlers = {
        "progress": _print_event,
        "frameProcessed": _print_event,
        "complete": _print_event,
        "error": _print_event
    }

    try:
        result = asyncio.run(upload_video(args.url, args.video, handlers=handlers, timeout_sec=args.timeout))
    except (ModerationError, httpx.HTTPError, OSError) as e:
        logger.error(f"Upload failed: {e}")
        sys.exit(1)

    print_result(result)


if __name__ == "__main__":
    main()
