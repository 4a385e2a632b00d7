import pytest
import json
from pathlib import Path
from unittest.mock import patch
from vtq.domain.errors import ProbeError
from vtq.infrastructure.ffprobe import FFprobeAdapter


@pytest.fixture
def video_file(tmp_path):
    f = tmp_path / "test.mp4"
    f.write_bytes(b"x" * 2048)
    return f


def _run_result(mock_run, payload, returncode=0):
    mock_run.return_value.stdout = json.dumps(payload) if not isinstance(payload, str) else payload
    mock_run.return_value.stderr = ""
    mock_run.return_value.returncode = returncode


def test_ffprobe_parse_streams(video_file):
    mock_output = {
        "streams": [
            {
                "index": 0,
                "codec_name": "h264",
                "codec_type": "video",
                "width": 1920,
                "height": 1080,
                "r_frame_rate": "30000/1001",
                "bit_rate": "5000000"
            },
            {
                "index": 1,
                "codec_name": "aac",
                "codec_type": "audio",
                "bit_rate": "128000"
            }
        ],
        "format": {
            "duration": "10.0",
            "bit_rate": "5200000"
        }
    }

    with patch("subprocess.run") as mock_run:
        _run_result(mock_run, mock_output)
        info = FFprobeAdapter().probe(video_file)

    assert info.path == video_file
    assert info.width == 1920
    assert info.height == 1080
    assert info.codec == "h264"
    assert info.fps == pytest.approx(29.97, rel=1e-3)
    assert info.duration == 10.0
    assert info.bitrate == 5_200_000
    assert info.size == 2048
    assert info.audio_codec == "aac"
    assert info.audio_bitrate == 128_000


def test_ffprobe_video_only_and_stream_bitrate(video_file):
    mock_output = {
        "streams": [
            {"codec_type": "video", "codec_name": "hevc", "width": 640, "height": 360,
             "r_frame_rate": "25/1", "bit_rate": "900000"}
        ],
        "format": {"duration": "3.5"}
    }
    with patch("subprocess.run") as mock_run:
        _run_result(mock_run, mock_output)
        info = FFprobeAdapter().probe(video_file)

    assert info.bitrate == 900_000
    assert info.fps == 25.0
    assert info.audio_codec is None
    assert info.audio_bitrate is None


def test_ffprobe_duration_from_tags(video_file):
    mock_output = {
        "streams": [
            {"codec_type": "video", "codec_name": "vp9", "width": 1280, "height": 720,
             "r_frame_rate": "0/0", "tags": {"DURATION": "00:01:02.500000000"}}
        ],
        "format": {}
    }
    with patch("subprocess.run") as mock_run:
        _run_result(mock_run, mock_output)
        info = FFprobeAdapter().probe(video_file)

    assert info.duration == pytest.approx(62.5)
    assert info.fps == 0.0
    assert info.bitrate == 0


def test_ffprobe_no_video_stream(video_file):
    mock_output = {"streams": [{"codec_type": "audio", "codec_name": "aac"}], "format": {}}
    with patch("subprocess.run") as mock_run:
        _run_result(mock_run, mock_output)
        with pytest.raises(ProbeError, match="No video stream found"):
            FFprobeAdapter().probe(video_file)


def test_ffprobe_error(video_file):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 1
        mock_run.return_value.stderr = "Invalid data found when processing input"
        with pytest.raises(ProbeError, match="ffprobe failed"):
            FFprobeAdapter().probe(video_file)


def test_ffprobe_invalid_json(video_file):
    with patch("subprocess.run") as mock_run:
        _run_result(mock_run, "not json")
        with pytest.raises(ProbeError, match="Failed to parse ffprobe output"):
            FFprobeAdapter().probe(video_file)


def test_ffprobe_not_installed(video_file):
    with patch("subprocess.run", side_effect=FileNotFoundError("ffprobe")):
        with pytest.raises(ProbeError, match="Failed to execute ffprobe"):
            FFprobeAdapter().probe(video_file)


def test_ffprobe_missing_file(tmp_path):
    with patch("subprocess.run") as mock_run:
        with pytest.raises(ProbeError, match="does not exist"):
            FFprobeAdapter().probe(tmp_path / "missing.mp4")
        mock_run.assert_not_called()


@pytest.mark.parametrize("value,expected", [
    ("30/1", 30.0),
    ("24000/1001", 24000 / 1001),
    ("25", 25.0),
    ("1/0", 0.0),
    (None, 0.0),
])
def test_parse_frame_rate(value, expected):
    assert FFprobeAdapter._parse_frame_rate(value) == pytest.approx(expected)
