from datetime import datetime, timezone

import pytest

from moderation_worker.events import Incident, JobResult
from moderation_worker.library import (
    calculate_severity, calculate_video_rating, generate_video_id, result_to_video_record
)


def incident(index, rating="16+", confidence=0.6):
    return Incident(
        frame_index=index,
        timestamp=index * 5.0,
        confidence=confidence,
        categories="Cursing",
        rating=rating,
        screenshot_url=f"/blobs/screenshots/frame-{index:04d}.jpg"
    )


@pytest.mark.parametrize("incidents, expected", [
    ([], "low"),
    ([incident(0)], "low"),
    ([incident(0), incident(1), incident(2)], "medium"),
    ([incident(0, confidence=1.0), incident(1, confidence=0.95)], "medium"),
    ([incident(0, rating="18+"), incident(1, rating="18+")], "high"),
    ([incident(i, confidence=1.0) for i in range(5)], "high"),
])
def test_calculate_severity(incidents, expected):
    assert calculate_severity(incidents) == expected


def test_calculate_video_rating():
    assert calculate_video_rating([]) == "safe"
    assert calculate_video_rating([incident(0)]) == "16+"
    assert calculate_video_rating([incident(0), incident(1, rating="18+")]) == "18+"


def test_generate_video_id():
    video_id = generate_video_id()

    assert video_id.startswith("vid_")
    assert len(video_id) == 16
    assert video_id != generate_video_id()


def test_result_to_video_record():
    result = JobResult(
        incidents=[incident(1, rating="18+"), incident(4)],
        total_frames=12,
        processed_at=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
        metadata={"degradedFrames": [7]}
    )

    video = result_to_video_record(result, "beach trip.mov", video_id="vid_abc")

    assert video.id == "vid_abc"
    assert video.title == "User Upload - beach trip"
    assert video.upload_date == "2024-05-01"
    assert video.thumbnail == "/blobs/screenshots/frame-0001.jpg"
    assert video.overall_rating == "18+"
    assert video.flag_count == 2
    assert video.status == "flagged"
    assert video.total_frames == 12
    assert video.degraded_frames == [7]
    assert video.model_dump(by_alias=True)["overallRating"] == "18+"
