import pytest
import threading
import yaml
from pathlib import Path
from vtq.config.models import AppConfig
from vtq.domain.models import EncodingSettings, Job, VideoInfo
from vtq.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "max_concurrent": 2,
            "recursive": False,
            "extensions": [".mp4", ".mov", ".mkv"],
            "debug": False,
        },
        encoding={
            "video_codec": "libx264",
            "crf": 23,
            "use_hardware": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vtq.yaml"

    content = {
        'general': {
            'max_concurrent': 3,
            'recursive': True,
            'extensions': ['mp4', 'MOV'],
            'debug': True,
        },
        'encoding': {
            'video_codec': 'libx265',
            'resolution': '1280x720',
            'bitrate': 2000000,
            'use_hardware': False,
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def recorded_events(event_bus):
    """Subscribes to every event type the queue publishes and records them in order."""
    from vtq.domain import events as ev

    recorded = []
    lock = threading.Lock()

    def record(event):
        with lock:
            recorded.append(event)

    for event_type in (
        ev.JobAdded, ev.JobRemoved, ev.QueueCleared, ev.JobProgressUpdated,
        ev.JobStatusChanged, ev.HardwareFallback, ev.EncoderLogLine,
        ev.QueuePaused, ev.QueueResumed, ev.ConcurrencyChanged, ev.QueueFinished,
    ):
        event_bus.subscribe(event_type, record)
    return recorded

# ============================================================================
# Domain Fixtures
# ============================================================================

@pytest.fixture
def sample_video_info():
    return VideoInfo(
        path=Path("/videos/input.mp4"),
        duration=10.0,
        width=1920,
        height=1080,
        bitrate=8_000_000,
        codec="h264",
        fps=29.97,
        size=10_000_000,
        audio_codec="aac",
        audio_bitrate=128_000,
    )

@pytest.fixture
def software_settings():
    return EncodingSettings(use_hardware=False)

@pytest.fixture
def make_job(sample_video_info, tmp_path):
    """Factory for Pending jobs with unique output paths."""
    counter = {"n": 0}

    def _make(settings=None, name=None, duration=None):
        counter["n"] += 1
        stem = name or f"video{counter['n']}"
        info = sample_video_info.model_copy(update={
            "path": tmp_path / f"{stem}.mp4",
            "duration": duration if duration is not None else sample_video_info.duration,
        })
        return Job(
            input_path=info.path,
            output_path=tmp_path / "out" / f"{stem}.mp4",
            video_info=info,
            settings=settings or EncodingSettings(use_hardware=False),
        )

    return _make

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def test_output_dir(tmp_path):
    """Creates a test output directory."""
    output_dir = tmp_path / "input_out"
    output_dir.mkdir()
    return output_dir

@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates dummy video files in test input directory."""
    files = []

    for i in range(3):
        f = test_input_dir / f"video{i}.mp4"
        f.write_bytes(b"dummy video content " * 100)  # ~2KB
        files.append(f)

    # Not a video
    (test_input_dir / "notes.txt").write_text("not a video")

    # Create a subdirectory with a file
    subdir = test_input_dir / "subdir"
    subdir.mkdir()
    f = subdir / "subvideo.mp4"
    f.write_bytes(b"dummy video content " * 100)
    files.append(f)

    return files

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
