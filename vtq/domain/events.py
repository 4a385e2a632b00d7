"""Domain events for the transcode queue.

Events flow through the EventBus and decouple the queue from whatever presents
it (CLI progress display, session autosave, tests).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import EncodingProgress, Job, JobStatus


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobAdded(Event):
    job: Job


class JobRemoved(Event):
    job_id: str


class QueueCleared(Event):
    pass


class JobProgressUpdated(Event):
    """Emitted for every progress block ffmpeg reports, in emission order."""

    job_id: str
    progress: EncodingProgress


class JobStatusChanged(Event):
    """Emitted whenever a job's status changes.

    ``output_path`` accompanies COMPLETED, ``error_message`` accompanies FAILED.
    """

    job_id: str
    status: JobStatus
    progress: float = 0.0
    output_path: Optional[Path] = None
    error_message: Optional[str] = None


class HardwareFallback(Event):
    """Emitted when a hardware encode failed and the job is retried in software."""

    job_id: str
    error_message: str


class EncoderLogLine(Event):
    """A single line of ffmpeg diagnostic output."""

    job_id: str
    line: str


class QueuePaused(Event):
    pass


class QueueResumed(Event):
    pass


class ConcurrencyChanged(Event):
    limit: int


class QueueFinished(Event):
    """Emitted once after a process_all() batch drains."""

    pass
