"""
Domain models for the moderation worker.

Defines the core data structures used throughout the system,
providing type safety and clear interfaces between components.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from .pipeline.vision import ContentAnalysis

SAFE = "safe"
SIXTEEN_PLUS = "16+"
EIGHTEEN_PLUS = "18+"

# Minimum confidence for a detected category to count towards the rating
FLAG_CONFIDENCE_THRESHOLD = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStage(str, Enum):
    """Stages of a processing run, in order"""
    START = "start"
    UPLOADED = "uploaded"
    EXTRACTED = "extracted"
    ANALYZING = "analyzing"
    CLEANUP = "cleanup"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETE, JobStage.ERROR)


@dataclass
class VideoJob:
    """Represents one processing run of an uploaded video"""
    filename: str
    source: bytes = field(repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=utcnow)

    @property
    def size_bytes(self) -> int:
        return len(self.source)


@dataclass(frozen=True)
class FrameRef:
    """Represents one extracted frame persisted in object storage"""
    index: int
    url: str
    timestamp: float
    filename: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FrameRef':
        return cls(
            index=int(data['index']),
            url=data['url'],
            timestamp=float(data['timestamp']),
            filename=data['filename']
        )


@dataclass(frozen=True)
class Detection:
    """Represents the rated classification of one frame"""
    analysis: ContentAnalysis
    rating: str
    sixteen_plus_detections: int
    eighteen_plus_detections: int
    highest_confidence: int
    degraded: bool = False

    @property
    def is_flagged(self) -> bool:
        return self.rating != SAFE

    def detected_categories(self) -> List[str]:
        """Names of categories detected at or above the flag threshold"""
        return [
            name
            for name, category in self.analysis.categories()
            if category.detected and category.confidence >= FLAG_CONFIDENCE_THRESHOLD
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'analysis': self.analysis.model_dump(),
            'rating': self.rating,
            'sixteen_plus_detections': self.sixteen_plus_detections,
            'eighteen_plus_detections': self.eighteen_plus_detections,
            'highest_confidence': self.highest_confidence,
            'degraded': self.degraded
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Detection':
        return cls(
            analysis=ContentAnalysis.model_validate(data['analysis']),
            rating=data['rating'],
            sixteen_plus_detections=data['sixteen_plus_detections'],
            eighteen_plus_detections=data['eighteen_plus_detections'],
            highest_confidence=data['highest_confidence'],
            degraded=data.get('degraded', False)
        )


@dataclass
class JobRecord:
    """Represents the persisted state of a processing run"""
    id: str
    filename: str
    stage: JobStage = JobStage.START
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None
    steps: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'filename': self.filename,
            'stage': self.stage.value,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'error': self.error,
            'completed_steps': sorted(self.steps)
        }
