"""
Client side of the progress stream.

The transport delivers arbitrary byte chunks: a JSON line may be split
across chunks, several lines may arrive in one chunk, and a multi-byte
UTF-8 character may straddle a chunk boundary.
"""

import codecs
import logging
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from .events import FrameProcessed, JobComplete, JobError, JobResult, ProgressUpdate, WireModel, parse_event
from .exceptions import JobFailedError, StreamTerminatedError

logger = logging.getLogger("moderation_worker")


class IncrementalStreamParser:
    """Reassembles newline-delimited events from a chunked byte stream"""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.events_parsed = 0
        self.lines_skipped = 0

    def feed(self, chunk: bytes) -> List[WireModel]:
        """
        Consume one chunk and return every event it completes.

        The trailing fragment after the last newline is kept for the next chunk.
        """
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")

        events = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        """End of data; an unterminated trailing fragment is dropped"""
        residual = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if residual.strip():
            logger.debug(f"Discarding {len(residual)} characters of unterminated stream data")

    def _parse_line(self, line: str) -> Optional[WireModel]:
        line = line.strip()
        if not line:
            return None
        try:
            event = parse_event(line)
        except ValidationError as e:
            self.lines_skipped += 1
            logger.warning(f"Skipping malformed stream line: {line[:200]} ({e.error_count()} errors)")
            return None
        self.events_parsed += 1
        return event


class StreamConsumer:
    """
    Feeds a parser and dispatches events by type.

    Handlers are optional callables keyed by event type ("progress",
    "frameProcessed", "complete", "error").
    """

    def __init__(self, handlers: Optional[Dict[str, Callable[[WireModel], None]]] = None):
        self.parser = IncrementalStreamParser()
        self.handlers = handlers or {}
        self.percent = 0
        self.result: Optional[JobResult] = None
        self.error: Optional[str] = None
        self.events: List[WireModel] = []

    def feed(self, chunk: bytes) -> List[WireModel]:
        events = self.parser.feed(chunk)
        for event in events:
            self._dispatch(event)
        return events

    def finish(self) -> JobResult:
        """
        Close the stream and return the job result.

        Raises:
            JobFailedError: the stream carried an error event
            StreamTerminatedError: the stream ended without a terminal event
        """
        self.parser.close()
        if self.error is not None:
            raise JobFailedError(self.error)
        if self.result is None:
            raise StreamTerminatedError("Stream ended without a completion event")
        return self.result

    def _dispatch(self, event: WireModel) -> None:
        self.events.append(event)

        if isinstance(event, (ProgressUpdate, FrameProcessed, JobComplete)):
            self.percent = max(self.percent, event.percent)
        if isinstance(event, JobComplete):
            self.result = event.result
        elif isinstance(event, JobError):
            self.error = event.message

        handler = self.handlers.get(event.type)
        if handler is not None:
            handler(event)
