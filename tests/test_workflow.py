import asyncio

import pytest

from moderation_worker.exceptions import JobStateError, NestedStepError
from moderation_worker.models import FrameRef
from moderation_worker.workflow import StepRunner, current_step


def make_runner(job_store, job_id="job-1", **kwargs):
    job_store.create_job(job_id, "clip.mp4")
    kwargs.setdefault("backoff_ms", 0)
    return StepRunner(job_id, job_store, **kwargs)


def test_step_result_is_journaled(job_store):
    runner = make_runner(job_store)

    async def upload():
        return "mem://videos/clip.mp4"

    assert asyncio.run(runner.run("upload-video", upload)) == "mem://videos/clip.mp4"
    assert job_store.get_steps("job-1") == {"upload-video": "mem://videos/clip.mp4"}
    assert runner.stats["executed"] == 1


def test_resumed_runner_replays_without_executing(job_store):
    calls = []

    def extract():
        calls.append(1)
        return [FrameRef(index=0, url="mem://frames/a.jpg", timestamp=0.0, filename="frame-0001.jpg")]

    def encode(frames):
        return [frame.to_dict() for frame in frames]

    def decode(data):
        return [FrameRef.from_dict(item) for item in data]

    async def run_once():
        runner = StepRunner("job-1", job_store, backoff_ms=0)
        await runner.load()
        frames = await runner.run("extract-frames", extract, encode=encode, decode=decode)
        return frames, runner

    job_store.create_job("job-1", "clip.mp4")
    first, _ = asyncio.run(run_once())
    second, resumed = asyncio.run(run_once())

    assert calls == [1]
    assert second == first
    assert isinstance(second[0], FrameRef)
    assert resumed.stats == {"executed": 0, "replayed": 1, "retries": 0}


def test_transient_failures_are_retried(job_store):
    runner = make_runner(job_store, max_attempts=3)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("connection reset")
        return 42

    assert asyncio.run(runner.run("flaky", flaky)) == 42
    assert len(attempts) == 3
    assert runner.stats["retries"] == 2


def test_exhausted_retries_raise_last_error(job_store):
    runner = make_runner(job_store, max_attempts=2)
    attempts = []

    async def broken():
        attempts.append(1)
        raise RuntimeError("still down")

    with pytest.raises(RuntimeError, match="still down"):
        asyncio.run(runner.run("broken", broken))
    assert len(attempts) == 2
    assert "broken" not in job_store.get_steps("job-1")


def test_non_retryable_error_is_raised_immediately(job_store):
    runner = make_runner(job_store, max_attempts=5)
    attempts = []

    async def refuse():
        attempts.append(1)
        raise JobStateError("cannot run")

    with pytest.raises(JobStateError):
        asyncio.run(runner.run("refuse", refuse))
    assert len(attempts) == 1


def test_nested_step_is_rejected(job_store):
    runner = make_runner(job_store)

    async def inner():
        return "inner"

    async def outer():
        return await runner.run("inner", inner)

    with pytest.raises(NestedStepError) as exc_info:
        asyncio.run(runner.run("outer", outer))

    assert exc_info.value.outer == "outer"
    assert exc_info.value.inner == "inner"
    assert job_store.get_steps("job-1") == {}


def test_sibling_steps_may_run_concurrently(job_store):
    runner = make_runner(job_store)

    async def work(value):
        await asyncio.sleep(0.01)
        return value

    async def scenario():
        return await asyncio.gather(*(runner.run(f"classify-frame:{i}", work, i) for i in range(5)))

    assert asyncio.run(scenario()) == [0, 1, 2, 3, 4]
    assert len(job_store.get_steps("job-1")) == 5


def test_sync_step_runs_in_worker_thread_with_step_context(job_store):
    runner = make_runner(job_store)

    assert asyncio.run(runner.run("sync-step", current_step)) == "sync-step"
    assert current_step() is None


def test_step_key_cannot_be_reused(job_store):
    runner = make_runner(job_store, max_attempts=1)

    async def broken():
        raise RuntimeError("nope")

    async def scenario():
        with pytest.raises(RuntimeError):
            await runner.run("same", broken)
        await runner.run("same", broken)

    with pytest.raises(ValueError, match="used twice"):
        asyncio.run(scenario())
