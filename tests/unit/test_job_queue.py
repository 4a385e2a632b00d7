import pytest
from unittest.mock import MagicMock
from vtq.domain.errors import EncodeFailure, SpawnError
from vtq.domain.events import (
    ConcurrencyChanged, JobAdded, JobProgressUpdated, JobRemoved, JobStatusChanged,
    QueueCleared, QueueFinished, QueuePaused, QueueResumed,
)
from vtq.domain.models import EncodingProgress, EncodingSettings, JobStatus
from vtq.pipeline.queue import JobQueue


class StubAdapter:
    """Synchronous stand-in for FFmpegAdapter."""

    def __init__(self, fail=None, progress=(), hw=()):
        self.fail = fail
        self.progress = list(progress)
        self.hw = list(hw)
        self.calls = []
        self.detect_calls = 0

    def detect_hardware_encoders(self):
        self.detect_calls += 1
        return self.hw

    def invoke(self, input_path, output_path, settings, hw_encoders, total_duration,
               on_progress=None, cancel_event=None, on_log=None):
        self.calls.append(settings)
        for pct in self.progress:
            on_progress(EncodingProgress(percentage=pct, current_time=pct / 10))
        if on_log:
            on_log("frame=1")
        if self.fail is not None:
            raise self.fail


def _types(events):
    return [type(e) for e in events]


def test_add_and_get(event_bus, recorded_events, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=2)
    job = make_job()
    queue.add(job)

    fetched = queue.get(job.id)
    assert fetched == job
    assert fetched is not job
    assert queue.get("missing") is None
    assert _types(recorded_events) == [JobAdded]
    assert recorded_events[0].job.id == job.id


def test_add_duplicate_id_rejected(event_bus, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)
    with pytest.raises(ValueError):
        queue.add(job.model_copy())
    assert queue.stats().total == 1


def test_list_jobs_preserves_order_and_returns_copies(event_bus, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    jobs = [make_job() for _ in range(3)]
    for job in jobs:
        queue.add(job)

    listed = queue.list_jobs()
    assert [j.id for j in listed] == [j.id for j in jobs]
    listed[0].transition(JobStatus.CANCELLED)
    assert queue.get(jobs[0].id).status == JobStatus.PENDING


def test_output_paths(event_bus, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)
    assert queue.output_paths() == [job.output_path]


def test_remove(event_bus, recorded_events, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    assert queue.remove(job.id) is True
    assert queue.remove(job.id) is False
    assert queue.get(job.id) is None
    assert _types(recorded_events) == [JobAdded, JobRemoved]


def test_clear(event_bus, recorded_events, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    queue.add(make_job())
    queue.add(make_job())

    queue.clear()

    assert queue.list_jobs() == []
    assert isinstance(recorded_events[-1], QueueCleared)


def test_cancel_pending_job(event_bus, recorded_events, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    assert queue.cancel_job(job.id) is True
    assert queue.get(job.id).status == JobStatus.CANCELLED
    assert isinstance(recorded_events[-1], JobStatusChanged)
    assert recorded_events[-1].status == JobStatus.CANCELLED

    # Terminal and unknown jobs
    assert queue.cancel_job(job.id) is False
    assert queue.cancel_job("missing") is False


def test_stats(event_bus, make_job):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    jobs = [make_job() for _ in range(3)]
    for job in jobs:
        queue.add(job)
    queue.cancel_job(jobs[0].id)

    stats = queue.stats()
    assert stats.total == 3
    assert stats.pending == 2
    assert stats.cancelled == 1
    assert stats.processing == 0


def test_concurrency_limit(event_bus, recorded_events):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=2)
    assert queue.concurrency_limit == 2

    queue.set_concurrency_limit(5)
    assert queue.concurrency_limit == 5
    assert isinstance(recorded_events[-1], ConcurrencyChanged)
    assert recorded_events[-1].limit == 5

    with pytest.raises(ValueError):
        queue.set_concurrency_limit(0)
    with pytest.raises(ValueError):
        JobQueue(StubAdapter(), event_bus, max_concurrent=0)


def test_default_concurrency_from_cores(event_bus, monkeypatch):
    monkeypatch.setattr("os.cpu_count", lambda: 16)
    assert JobQueue(StubAdapter(), event_bus).concurrency_limit == 4


def test_pause_resume(event_bus, recorded_events):
    queue = JobQueue(StubAdapter(), event_bus, max_concurrent=1)
    assert queue.is_paused() is False
    queue.pause()
    assert queue.is_paused() is True
    queue.resume()
    assert queue.is_paused() is False
    assert _types(recorded_events) == [QueuePaused, QueueResumed]


def test_process_all_success(event_bus, recorded_events, make_job):
    adapter = StubAdapter(progress=[25.0, 50.0, 75.0])
    queue = JobQueue(adapter, event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    queue.process_all()

    done = queue.get(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100.0
    assert done.started_at is not None
    assert done.completed_at is not None

    progress = [e.progress.percentage for e in recorded_events if isinstance(e, JobProgressUpdated)]
    assert progress == [25.0, 50.0, 75.0]

    statuses = [e for e in recorded_events if isinstance(e, JobStatusChanged)]
    assert [e.status for e in statuses] == [JobStatus.PROCESSING, JobStatus.COMPLETED]
    assert statuses[-1].output_path == job.output_path
    assert isinstance(recorded_events[-1], QueueFinished)


def test_process_all_software_failure_has_no_fallback(event_bus, recorded_events, make_job):
    adapter = StubAdapter(fail=EncodeFailure(1, ["Invalid argument"]))
    queue = JobQueue(adapter, event_bus, max_concurrent=1)
    job = make_job(settings=EncodingSettings(use_hardware=False))
    queue.add(job)

    queue.process_all()

    failed = queue.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert "ffmpeg exited with code 1" in failed.error_message
    assert "Invalid argument" in failed.error_message
    assert len(adapter.calls) == 1
    assert adapter.detect_calls == 0
    last_status = [e for e in recorded_events if isinstance(e, JobStatusChanged)][-1]
    assert last_status.error_message == failed.error_message


def test_process_all_spawn_failure(event_bus, make_job):
    queue = JobQueue(StubAdapter(fail=SpawnError("Failed to spawn ffmpeg process: nope")), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    queue.process_all()

    assert queue.get(job.id).status == JobStatus.FAILED
    assert "Failed to spawn" in queue.get(job.id).error_message


def test_process_all_unexpected_exception_fails_job(event_bus, make_job):
    queue = JobQueue(StubAdapter(fail=RuntimeError("kaboom")), event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    queue.process_all()

    assert queue.get(job.id).status == JobStatus.FAILED
    assert queue.get(job.id).error_message == "Exception: kaboom"


def test_process_all_failing_subscriber_does_not_strand_job(event_bus, make_job):
    adapter = StubAdapter()
    queue = JobQueue(adapter, event_bus, max_concurrent=1)
    job = make_job()
    queue.add(job)

    @event_bus.subscribe(JobStatusChanged)
    def explode(event):
        if event.status == JobStatus.PROCESSING:
            raise RuntimeError("subscriber broke")

    queue.process_all()

    final = queue.get(job.id)
    assert final.status == JobStatus.FAILED
    assert "subscriber broke" in final.error_message
    assert adapter.calls == []
    assert queue.stats().processing == 0


def test_process_all_empty_queue(event_bus, recorded_events):
    adapter = MagicMock()
    queue = JobQueue(adapter, event_bus, max_concurrent=1)

    queue.process_all()

    adapter.detect_hardware_encoders.assert_not_called()
    assert _types(recorded_events) == [QueueFinished]


def test_process_all_skips_terminal_jobs(event_bus, make_job):
    adapter = StubAdapter()
    queue = JobQueue(adapter, event_bus, max_concurrent=2)
    cancelled = make_job()
    pending = make_job()
    queue.add(cancelled)
    queue.add(pending)
    queue.cancel_job(cancelled.id)

    queue.process_all()

    assert len(adapter.calls) == 1
    assert queue.get(cancelled.id).status == JobStatus.CANCELLED
    assert queue.get(pending.id).status == JobStatus.COMPLETED

    # A second batch has nothing left to do
    queue.process_all()
    assert len(adapter.calls) == 1


def test_process_all_detects_hardware_once_per_batch(event_bus, make_job):
    adapter = StubAdapter(hw=["h264_nvenc"])
    queue = JobQueue(adapter, event_bus, max_concurrent=2)
    for _ in range(3):
        queue.add(make_job(settings=EncodingSettings(use_hardware=True)))

    queue.process_all()

    assert adapter.detect_calls == 1
    assert queue.stats().completed == 3
