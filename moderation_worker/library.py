"""
Moderated video records.

Turns a finished JobResult into the record a reviewer works with, and
derives the per-video severity and overall rating from its incidents.
"""

import os
import uuid
from typing import List, Optional, Sequence

from pydantic import Field

from .events import Incident, JobResult, WireModel
from .models import SAFE, SIXTEEN_PLUS, EIGHTEEN_PLUS

VIDEO_STATUSES = ("flagged", "approved", "removed")

HIGH_CONFIDENCE = 0.9


class VideoRecord(WireModel):
    """A processed video kept for review"""
    id: str
    title: str
    filename: str
    upload_date: str
    thumbnail: str = ""
    severity: str = "low"
    overall_rating: str = SAFE
    flag_count: int = 0
    status: str = "flagged"
    total_frames: int = 0
    degraded_frames: List[int] = Field(default_factory=list)
    incidents: List[Incident] = Field(default_factory=list)


def generate_video_id() -> str:
    return f"vid_{uuid.uuid4().hex[:12]}"


def calculate_severity(incidents: Sequence[Incident]) -> str:
    """
    Severity from incident count, confidence and rating.

    Returns:
        "high", "medium" or "low"
    """
    if not incidents:
        return "low"

    high_confidence_count = len([i for i in incidents if i.confidence > HIGH_CONFIDENCE])
    eighteen_plus_count = len([i for i in incidents if i.rating == EIGHTEEN_PLUS])

    if eighteen_plus_count >= 2 or high_confidence_count >= 5:
        return "high"
    if len(incidents) >= 3 or high_confidence_count >= 2:
        return "medium"
    return "low"


def calculate_video_rating(incidents: Sequence[Incident]) -> str:
    """The whole video takes the strictest rating of any flagged frame"""
    ratings = {incident.rating for incident in incidents}
    if EIGHTEEN_PLUS in ratings:
        return EIGHTEEN_PLUS
    if SIXTEEN_PLUS in ratings:
        return SIXTEEN_PLUS
    return SAFE


def result_to_video_record(result: JobResult, filename: str, video_id: Optional[str] = None) -> VideoRecord:
    """Convert a finished job result into a reviewable video record"""
    incidents = list(result.incidents)
    title = f"User Upload - {os.path.splitext(filename)[0]}"

    return VideoRecord(
        id=video_id or generate_video_id(),
        title=title,
        filename=filename,
        upload_date=result.processed_at.date().isoformat(),
        thumbnail=incidents[0].screenshot_url if incidents else "",
        severity=calculate_severity(incidents),
        overall_rating=calculate_video_rating(incidents),
        flag_count=len(incidents),
        status="flagged",
        total_frames=result.total_frames,
        degraded_frames=list(result.metadata.get("degradedFrames", [])),
        incidents=incidents
    )
