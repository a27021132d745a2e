import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..events import FrameProcessed, Incident, WireModel
from ..exceptions import ClassificationError
from ..models import Detection, FrameRef
from ..workflow import StepRunner
from .moderation import FrameAnalyzer

logger = logging.getLogger("moderation_worker")

# (step key, event) -> None
EmitFn = Callable[[str, WireModel], Awaitable[None]]


@dataclass
class ScheduleOutcome:
    """Collected result of the analysis stage"""
    incidents: List[Incident]
    total_frames: int
    degraded_frames: List[int] = field(default_factory=list)


def stage_percent(current: int, total: int, start: int = 40, end: int = 90) -> int:
    """Map current/total onto the [start, end] share of overall progress"""
    if total <= 0:
        return end
    return start + (min(current, total) * (end - start)) // total


class BoundedScheduler:
    """
    Runs the frame analyzer over all frames with a fixed concurrency ceiling.

    A new frame is admitted as soon as any in-flight analysis finishes.
    Every completion emits one frameProcessed event, in completion order.
    """

    def __init__(
        self,
        analyzer: FrameAnalyzer,
        runner: StepRunner,
        emit: EmitFn,
        max_concurrent: int = 10,
        percent_range: Tuple[int, int] = (40, 90),
        fallback_enabled: bool = True
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.analyzer = analyzer
        self.runner = runner
        self.emit = emit
        self.max_concurrent = max_concurrent
        self.percent_range = percent_range
        self.fallback_enabled = fallback_enabled

    async def run(self, frames: Sequence[FrameRef]) -> ScheduleOutcome:
        """
        Analyze all frames.

        Returns:
            ScheduleOutcome with incidents sorted by timestamp
        """
        start_time = time.time()
        total = len(frames)
        semaphore = asyncio.Semaphore(self.max_concurrent)
        progress_lock = asyncio.Lock()
        results: Dict[int, Optional[Incident]] = {}
        degraded: List[int] = []
        completed = 0

        logger.info(f"Analyzing {total} frames with {self.max_concurrent} concurrent requests")

        async def process(frame: FrameRef) -> None:
            nonlocal completed

            async with semaphore:
                incident, was_degraded = await self._analyze_one(frame)

            # Count and emit under one lock so percents never go backwards
            async with progress_lock:
                completed += 1
                results[frame.index] = incident
                if was_degraded:
                    degraded.append(frame.index)
                current = completed
                event = FrameProcessed(
                    current=current,
                    total=total,
                    percent=stage_percent(current, total, *self.percent_range),
                    message=f"Processing frame {current} of {total}"
                )
                await self.emit(f"emit:frame-processed:{current}", event)

        outcomes = await asyncio.gather(*(process(frame) for frame in frames), return_exceptions=True)

        # All analyses have settled; surface the first job-scope failure
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        incidents = sorted(
            (incident for incident in results.values() if incident is not None),
            key=lambda incident: incident.timestamp
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Analysis completed in {elapsed:.2f}s: {len(incidents)} incidents, "
            f"{len(degraded)} degraded of {total} frames"
        )

        return ScheduleOutcome(
            incidents=incidents,
            total_frames=total,
            degraded_frames=sorted(degraded)
        )

    async def _analyze_one(self, frame: FrameRef) -> Tuple[Optional[Incident], bool]:
        """Classify one frame, falling back on classification errors"""
        try:
            detection = await self.runner.run(
                f"classify-frame:{frame.index}",
                self.analyzer.analyze,
                frame,
                encode=Detection.to_dict,
                decode=Detection.from_dict
            )
        except ClassificationError as e:
            if not self.fallback_enabled:
                raise
            detection = self.analyzer.fallback(frame, e)

        if not detection.is_flagged:
            return None, detection.degraded

        screenshot_url = await self.runner.run(
            f"upload-screenshot:{frame.index}",
            self.analyzer.upload_screenshot,
            frame
        )
        return self.analyzer.build_incident(frame, detection, screenshot_url), detection.degraded
