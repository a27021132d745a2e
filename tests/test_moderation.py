import asyncio
from types import SimpleNamespace

import pytest

from moderation_worker.exceptions import ClassificationError, ClassificationTimeout
from moderation_worker.models import FrameRef
from moderation_worker.pipeline.moderation import FrameAnalyzer, calculate_rating
from moderation_worker.pipeline.vision import ContentAnalysis, GeminiClassifier, image_to_url, strict_json_schema

from .fakes import FakeClassifier, make_analysis


def stored_frame(storage, index=0, data=None):
    url = storage.put(f"frames/clip-frame-{index + 1:04d}.jpg", data or f"frame-{index}".encode(), "image/jpeg")
    return FrameRef(index=index, url=url, timestamp=index * 5.0, filename=f"frame-{index + 1:04d}.jpg")


def test_nothing_detected_is_safe():
    detection = calculate_rating(make_analysis())

    assert detection.rating == "safe"
    assert not detection.is_flagged
    assert detection.highest_confidence == 0


def test_tier_b_at_threshold_is_eighteen_plus():
    detection = calculate_rating(make_analysis(gore=3))

    assert detection.rating == "18+"
    assert detection.eighteen_plus_detections == 1
    assert detection.detected_categories() == ["gore"]


def test_below_threshold_is_not_flagged():
    detection = calculate_rating(make_analysis(gore=2, cursing=2))

    assert detection.rating == "safe"
    assert detection.highest_confidence == 2
    assert detection.detected_categories() == []


def test_tier_a_only_is_sixteen_plus():
    detection = calculate_rating(make_analysis(cursing=4, strong_language=3, nudity=2))

    assert detection.rating == "16+"
    assert detection.sixteen_plus_detections == 2
    assert detection.eighteen_plus_detections == 0
    assert detection.highest_confidence == 4


def test_tier_b_wins_over_tier_a():
    detection = calculate_rating(make_analysis(cursing=5, drug_use=3))

    assert detection.rating == "18+"
    assert detection.sixteen_plus_detections == 1
    assert detection.eighteen_plus_detections == 1


def test_confidence_outside_scale_is_rejected():
    data = make_analysis().model_dump()
    data["eighteen_plus"]["gore"]["confidence"] = 6

    with pytest.raises(ValueError):
        ContentAnalysis.model_validate(data)


def test_detection_dict_round_trip():
    detection = calculate_rating(make_analysis(murder=5))

    assert type(detection).from_dict(detection.to_dict()) == detection


def test_analyze_sends_frame_bytes(storage):
    classifier = FakeClassifier(verdicts={b"frame-0": make_analysis(stabbing=4)})
    analyzer = FrameAnalyzer(classifier, storage)

    detection = asyncio.run(analyzer.analyze(stored_frame(storage)))

    assert classifier.calls == [b"frame-0"]
    assert detection.rating == "18+"


def test_analyze_can_send_frame_url(storage):
    classifier = FakeClassifier()
    analyzer = FrameAnalyzer(classifier, storage, classify_with_urls=True)
    frame = stored_frame(storage)

    asyncio.run(analyzer.analyze(frame))

    assert classifier.calls == [frame.url]


def test_analyze_times_out(storage):
    classifier = FakeClassifier(delay=1.0)
    analyzer = FrameAnalyzer(classifier, storage, timeout_sec=0.01)

    with pytest.raises(ClassificationTimeout):
        asyncio.run(analyzer.analyze(stored_frame(storage)))


def test_classifier_errors_become_classification_errors(storage):
    classifier = FakeClassifier(failures={b"frame-0": RuntimeError("rate limited")})
    analyzer = FrameAnalyzer(classifier, storage)

    with pytest.raises(ClassificationError, match="rate limited"):
        asyncio.run(analyzer.analyze(stored_frame(storage)))


def test_missing_frame_is_a_classification_error(storage):
    analyzer = FrameAnalyzer(FakeClassifier(), storage)
    frame = FrameRef(index=0, url="mem://frames/missing.jpg", timestamp=0.0, filename="missing.jpg")

    with pytest.raises(ClassificationError):
        asyncio.run(analyzer.analyze(frame))


def test_fallback_is_degraded_and_safe(storage):
    analyzer = FrameAnalyzer(FakeClassifier(), storage)

    detection = analyzer.fallback(stored_frame(storage), RuntimeError("model down"))

    assert detection.degraded
    assert detection.rating == "safe"
    assert all(not category.detected for _, category in detection.analysis.categories())


def test_screenshot_and_incident(storage):
    analyzer = FrameAnalyzer(FakeClassifier(), storage)
    frame = stored_frame(storage, index=3)
    detection = calculate_rating(make_analysis(gore=4, stabbing=3, cursing=1))

    screenshot_url = analyzer.upload_screenshot(frame)
    incident = analyzer.build_incident(frame, detection, screenshot_url)

    assert screenshot_url.startswith("mem://screenshots/frame-0004")
    assert storage.objects[screenshot_url] == b"frame-3"
    assert incident.frame_index == 3
    assert incident.timestamp == 15.0
    assert incident.confidence == pytest.approx(0.8)
    assert incident.categories == "Stabbing, Gore"
    assert incident.rating == "18+"


def test_image_to_url():
    assert image_to_url(b"abc") == "data:image/jpeg;base64,YWJj"
    assert image_to_url("https://example.com/a.jpg") == "https://example.com/a.jpg"


def test_strict_schema_forbids_extra_properties():
    schema = strict_json_schema()

    assert schema["additionalProperties"] is False
    assert set(schema["properties"]) == {"sixteenPlus", "eighteenPlus"}
    assert set(schema["required"]) == {"sixteenPlus", "eighteenPlus"}

    def walk(node, path=""):
        if isinstance(node, dict):
            if "$ref" in node:
                assert set(node) == {"$ref"}, path
            if node.get("type") == "object":
                assert node["additionalProperties"] is False, path
            for key, value in node.items():
                walk(value, f"{path}/{key}")
        elif isinstance(node, list):
            for i, item in enumerate(node):
                walk(item, f"{path}/{i}")

    walk(schema)


class FakeGenerativeModel:
    def __init__(self, text):
        self.text = text
        self.requests = []

    async def generate_content_async(self, contents):
        self.requests.append(contents)
        return SimpleNamespace(text=self.text)


def test_gemini_classifier_parses_fenced_json():
    answer = make_analysis(gore=4).model_dump_json(by_alias=True)
    model = FakeGenerativeModel(f"```json\n{answer}\n```")
    classifier = GeminiClassifier(generative_model=model)

    analysis = asyncio.run(classifier.classify(b"jpeg"))

    assert analysis.eighteen_plus.gore.detected is True
    assert analysis.eighteen_plus.gore.confidence == 4
    prompt, image_part = model.requests[0]
    assert "sixteenPlus" in prompt
    assert image_part == {"mime_type": "image/jpeg", "data": b"jpeg"}


def test_gemini_empty_answer_is_a_classification_error(storage):
    classifier = GeminiClassifier(generative_model=FakeGenerativeModel(""))
    analyzer = FrameAnalyzer(classifier, storage)

    with pytest.raises(ClassificationError):
        asyncio.run(analyzer.analyze(stored_frame(storage)))
