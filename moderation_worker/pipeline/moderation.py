import asyncio
import logging
from typing import Optional, Union

from ..adapters.base import StorageAdapter
from ..events import Incident
from ..exceptions import ClassificationError, ClassificationTimeout
from ..models import (
    Detection, FrameRef, FLAG_CONFIDENCE_THRESHOLD,
    SAFE, SIXTEEN_PLUS, EIGHTEEN_PLUS
)
from .vision import (
    CATEGORY_LABELS, CategoryDetection, ContentAnalysis, ContentClassifier,
    EighteenPlusCategories, SixteenPlusCategories
)

logger = logging.getLogger("moderation_worker")


def calculate_rating(analysis: ContentAnalysis, degraded: bool = False) -> Detection:
    """
    Derive the frame rating from the category verdicts.

    A category counts when it is detected with confidence >= 3. Any counted
    18+ category rates the frame 18+, otherwise any counted 16+ category
    rates it 16+, otherwise it is safe.
    """
    sixteen_plus_detections = 0
    eighteen_plus_detections = 0
    highest_confidence = 0

    for name in SixteenPlusCategories.model_fields:
        category = getattr(analysis.sixteen_plus, name)
        if category.detected:
            highest_confidence = max(highest_confidence, category.confidence)
            if category.confidence >= FLAG_CONFIDENCE_THRESHOLD:
                sixteen_plus_detections += 1

    for name in EighteenPlusCategories.model_fields:
        category = getattr(analysis.eighteen_plus, name)
        if category.detected:
            highest_confidence = max(highest_confidence, category.confidence)
            if category.confidence >= FLAG_CONFIDENCE_THRESHOLD:
                eighteen_plus_detections += 1

    rating = SAFE
    if eighteen_plus_detections > 0:
        rating = EIGHTEEN_PLUS
    elif sixteen_plus_detections > 0:
        rating = SIXTEEN_PLUS

    return Detection(
        analysis=analysis,
        rating=rating,
        sixteen_plus_detections=sixteen_plus_detections,
        eighteen_plus_detections=eighteen_plus_detections,
        highest_confidence=highest_confidence,
        degraded=degraded
    )


def fallback_analysis(reason: str) -> ContentAnalysis:
    """An analysis with nothing detected, used when the model is unavailable"""
    unavailable = CategoryDetection(detected=False, confidence=1, reason=f"Classification unavailable: {reason}")
    return ContentAnalysis(
        sixteen_plus=SixteenPlusCategories(**{name: unavailable for name in SixteenPlusCategories.model_fields}),
        eighteen_plus=EighteenPlusCategories(**{name: unavailable for name in EighteenPlusCategories.model_fields})
    )


class FrameAnalyzer:
    """Classifies single frames and turns flagged ones into incidents"""

    def __init__(
        self,
        classifier: ContentClassifier,
        storage: StorageAdapter,
        timeout_sec: float = 120.0,
        classify_with_urls: bool = False
    ):
        self.classifier = classifier
        self.storage = storage
        self.timeout_sec = timeout_sec
        self.classify_with_urls = classify_with_urls

    async def analyze(self, frame: FrameRef) -> Detection:
        """
        Classify one frame under the configured timeout.

        Raises:
            ClassificationTimeout: the model did not answer in time
            ClassificationError: the frame could not be loaded or the model failed
        """
        image: Union[bytes, str]
        if self.classify_with_urls:
            image = frame.url
        else:
            try:
                image = await asyncio.to_thread(self.storage.fetch, frame.url)
            except Exception as e:
                raise ClassificationError(f"Could not load frame {frame.index}: {e}") from e

        try:
            analysis = await asyncio.wait_for(self.classifier.classify(image), timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            raise ClassificationTimeout(self.timeout_sec) from e
        except ClassificationError:
            raise
        except Exception as e:
            raise ClassificationError(f"Classification failed for frame {frame.index}: {e}") from e

        detection = calculate_rating(analysis)
        logger.debug(
            f"Frame {frame.index} at {frame.timestamp:g}s rated {detection.rating} "
            f"({detection.sixteen_plus_detections} 16+, {detection.eighteen_plus_detections} 18+)"
        )
        return detection

    def fallback(self, frame: FrameRef, error: Optional[BaseException] = None) -> Detection:
        """Degraded result for a frame whose classification failed"""
        reason = str(error) if error else "unknown error"
        logger.warning(f"Frame {frame.index} at {frame.timestamp:g}s falls back to a degraded result: {reason}")
        return calculate_rating(fallback_analysis(reason), degraded=True)

    def upload_screenshot(self, frame: FrameRef) -> str:
        """Copy a flagged frame to the screenshots prefix and return its URL"""
        data = self.storage.fetch(frame.url)
        return self.storage.put(
            f"screenshots/{frame.filename}",
            data,
            content_type="image/jpeg",
            public=True,
            unique_suffix=True
        )

    @staticmethod
    def build_incident(frame: FrameRef, detection: Detection, screenshot_url: str) -> Incident:
        labels = [CATEGORY_LABELS.get(name, name) for name in detection.detected_categories()]
        return Incident(
            frame_index=frame.index,
            timestamp=frame.timestamp,
            confidence=detection.highest_confidence / 5,
            categories=", ".join(labels) if labels else "flagged",
            rating=detection.rating,
            screenshot_url=screenshot_url,
            degraded=detection.degraded,
            analysis=detection.analysis
        )
