import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from moderation_worker.client import print_result, upload_video
from moderation_worker.pipeline.frames import FrameExtractor
from moderation_worker.service import WorkerService

from .fakes import FakeClassifier, fake_decoder, frame_bytes, make_analysis


@pytest.fixture
def service(config, storage, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    classifier = FakeClassifier(verdicts={frame_bytes(1): make_analysis(drug_use=4)})
    service = WorkerService(config, storage=storage, classifier=classifier)
    service.initialize()
    service.orchestrator.extractor = FrameExtractor(
        storage,
        config.scratch_dir,
        decoder=fake_decoder(4),
        probe=lambda path: 20.0
    )
    yield service
    service.stop()


@pytest.fixture
def client(service):
    with TestClient(service.http_server.app) as client:
        yield client


def upload(client, name="clip.mp4", data=b"\x00\x00\x00\x18ftypmp42" * 32):
    return client.post("/api/upload-video", files={"video": (name, data, "video/mp4")})


def parse_lines(body: bytes):
    return [json.loads(line) for line in body.splitlines() if line.strip()]


def test_upload_without_file_is_rejected(client):
    response = client.post("/api/upload-video")

    assert response.status_code == 400


def test_upload_streams_progress_until_complete(client, storage):
    response = upload(client)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = parse_lines(response.content)
    assert events[0] == {"type": "progress", "step": "started", "message": "Starting video processing", "percent": 5}
    assert [event["type"] for event in events].count("frameProcessed") == 4
    assert events[-1]["type"] == "complete"
    assert [event["type"] for event in events].count("complete") == 1

    result = events[-1]["result"]
    assert result["totalFrames"] == 4
    assert [incident["frameIndex"] for incident in result["incidents"]] == [1]
    assert result["incidents"][0]["rating"] == "18+"
    assert len(storage.deletes) == 1


def test_upload_failure_streams_error_event(client, service):
    def broken_decoder(video_path, output_dir, interval_sec):
        raise RuntimeError("decoder crashed")

    service.orchestrator.extractor.decoder = broken_decoder

    events = parse_lines(upload(client).content)

    assert events[-1] == {"type": "error", "message": "decoder crashed"}
    assert [event["type"] for event in events].count("error") == 1


def test_processed_video_can_be_reviewed(client):
    result = parse_lines(upload(client, name="party.mp4").content)[-1]["result"]
    video_id = result["metadata"]["videoId"]

    listing = client.get("/api/videos").json()
    assert [video["id"] for video in listing] == [video_id]
    assert listing[0]["title"] == "User Upload - party"
    assert listing[0]["overallRating"] == "18+"

    response = client.patch(f"/api/videos/{video_id}", json={"status": "approved"})
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    assert client.patch(f"/api/videos/{video_id}", json={"status": "deleted"}).status_code == 400
    assert client.delete(f"/api/videos/{video_id}").json() == {"ok": True, "id": video_id}
    assert client.get(f"/api/videos/{video_id}").status_code == 404


def test_job_status_endpoint(client, service):
    result = parse_lines(upload(client).content)[-1]["result"]
    job_id = result["metadata"]["jobId"]

    job = client.get(f"/api/jobs/{job_id}").json()

    assert job["stage"] == "complete"
    assert "save-result" in job["completed_steps"]
    assert client.get("/api/jobs/unknown").status_code == 404


def test_healthz(client):
    body = client.get("/healthz").json()

    assert body["ok"] is True
    assert body["stats"]["jobs_processed"] == 0


def test_streaming_client_parses_upload_response(service, tmp_path, capsys):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" * 32)
    seen = []

    async def scenario():
        transport = httpx.ASGITransport(app=service.http_server.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://worker") as http_client:
            return await upload_video(
                "http://worker",
                str(path),
                handlers={"frameProcessed": seen.append},
                client=http_client
            )

    result = asyncio.run(scenario())

    assert result.total_frames == 4
    assert [event.current for event in seen] == [1, 2, 3, 4]

    print_result(result)
    output = capsys.readouterr().out
    assert "1 incident(s) in 4 frames" in output
    assert "0:05" in output
