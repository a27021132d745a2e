import os

import pytest

from moderation_worker.exceptions import DownloadError, ExtractionError, IntegrityError
from moderation_worker.pipeline.frames import FrameExtractor, expected_frame_count
from moderation_worker.pipeline.util import clean_filename, format_timestamp

from .fakes import fake_decoder


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return str(path)


@pytest.fixture
def source_url(storage):
    return storage.put("videos/clip.mp4", b"\x00\x00\x00\x18ftypmp42" * 64, "video/mp4")


def test_thirty_second_video_yields_six_frames(storage, scratch_dir, source_url):
    decoder = fake_decoder(7)
    extractor = FrameExtractor(storage, scratch_dir, interval_sec=5.0, decoder=decoder, probe=lambda path: 30.0)

    frames = extractor.extract(source_url, "clip.mp4")

    assert [frame.index for frame in frames] == [0, 1, 2, 3, 4, 5]
    assert [frame.timestamp for frame in frames] == [0.0, 5.0, 10.0, 15.0, 20.0, 25.0]
    assert len(decoder.calls) == 1
    assert len(storage.puts_under("frames/")) == 6
    assert storage.objects[frames[2].url] == b"frame-2"
    assert frames[0].url.startswith("mem://frames/clip-frame-0001")


def test_frame_count_is_not_capped_without_duration(storage, scratch_dir, source_url):
    extractor = FrameExtractor(storage, scratch_dir, decoder=fake_decoder(3), probe=lambda path: None)

    frames = extractor.extract(source_url, "clip.mp4")

    assert len(frames) == 3


def test_scratch_files_are_removed_after_success(storage, scratch_dir, source_url):
    extractor = FrameExtractor(storage, scratch_dir, decoder=fake_decoder(2), probe=lambda path: 10.0)

    extractor.extract(source_url, "clip.mp4")

    assert os.listdir(scratch_dir) == []


def test_download_failure(storage, scratch_dir, source_url):
    storage.fail_fetch = True
    extractor = FrameExtractor(storage, scratch_dir, decoder=fake_decoder(2))

    with pytest.raises(DownloadError):
        extractor.extract(source_url, "clip.mp4")
    assert os.listdir(scratch_dir) == []


def test_size_mismatch_is_an_integrity_error(storage, scratch_dir, source_url, monkeypatch):
    decoder = fake_decoder(2)
    extractor = FrameExtractor(storage, scratch_dir, decoder=decoder)
    monkeypatch.setattr(os.path, "getsize", lambda path: 1)

    with pytest.raises(IntegrityError) as exc_info:
        extractor.extract(source_url, "clip.mp4")

    assert exc_info.value.written == 1
    assert exc_info.value.expected == len(storage.objects[source_url])
    assert decoder.calls == []


def test_decoder_failure_cleans_up(storage, scratch_dir, source_url):
    def broken_decoder(video_path, output_dir, interval_sec):
        raise ExtractionError("FFmpeg frame extraction failed: moov atom not found")

    extractor = FrameExtractor(storage, scratch_dir, decoder=broken_decoder)

    with pytest.raises(ExtractionError):
        extractor.extract(source_url, "clip.mp4")
    assert os.listdir(scratch_dir) == []
    assert storage.puts_under("frames/") == []


@pytest.mark.parametrize("duration, expected", [
    (30.0, 6),
    (31.0, 7),
    (29.9999999, 6),
    (4.0, 1),
    (None, None),
    (0.0, None),
])
def test_expected_frame_count(duration, expected):
    assert expected_frame_count(duration, 5.0) == expected


def test_clean_filename():
    assert clean_filename("../../etc/my video?.mp4") == "my_video_.mp4"
    assert clean_filename("C:\\Users\\me\\clip.mp4") == "clip.mp4"
    assert clean_filename("...") == "unnamed"


def test_format_timestamp():
    assert format_timestamp(0) == "0:00"
    assert format_timestamp(65.4) == "1:05"
    assert format_timestamp(3725) == "1:02:05"
