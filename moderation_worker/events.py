"""
Wire format of the progress stream.

Every event is one JSON object on its own line. Keys are camelCase on the
wire and snake_case in Python.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .pipeline.vision import ContentAnalysis


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Incident(WireModel):
    """A flagged frame"""
    frame_index: int
    timestamp: float
    confidence: float = Field(ge=0, le=1)
    categories: str
    rating: str
    screenshot_url: str
    degraded: bool = False
    analysis: Optional[ContentAnalysis] = None


class JobResult(WireModel):
    """Final result of a processing run"""
    incidents: List[Incident]
    total_frames: int
    processed_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProgressUpdate(WireModel):
    type: Literal["progress"] = "progress"
    step: str
    message: str
    percent: int = Field(ge=0, le=100)
    total_frames: Optional[int] = None


class FrameProcessed(WireModel):
    type: Literal["frameProcessed"] = "frameProcessed"
    current: int
    total: int
    percent: int = Field(ge=0, le=100)
    message: Optional[str] = None


class JobComplete(WireModel):
    type: Literal["complete"] = "complete"
    percent: int = 100
    message: str = "Processing complete"
    result: JobResult


class JobError(WireModel):
    type: Literal["error"] = "error"
    message: str


ProgressEvent = Annotated[
    Union[ProgressUpdate, FrameProcessed, JobComplete, JobError],
    Field(discriminator="type")
]

TERMINAL_EVENT_TYPES = ("complete", "error")

_event_adapter = TypeAdapter(ProgressEvent)


def is_terminal(event: Any) -> bool:
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES


def serialize_event(event: WireModel) -> bytes:
    """Encode one event as a newline-terminated JSON line"""
    line = event.model_dump_json(by_alias=True, exclude_none=True)
    return (line + "\n").encode("utf-8")


def parse_event(line: Union[str, bytes]) -> WireModel:
    """Decode one JSON line into the matching event model"""
    return _event_adapter.validate_json(line)
