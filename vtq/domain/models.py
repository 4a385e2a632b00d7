import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAUSED = "PAUSED"  # queue-wide pause, never assigned per job
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class EncodingSettings(BaseModel):
    """Declarative ffmpeg settings, fixed once a job is created.

    When both ``bitrate`` and ``crf`` are set, ``bitrate`` drives rate control.
    """

    model_config = ConfigDict(frozen=True)

    output_format: str = "mp4"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    resolution: Optional[Tuple[int, int]] = None
    bitrate: Optional[int] = Field(default=None, gt=0)  # bits per second
    crf: Optional[int] = Field(default=23, ge=0, le=51)
    preset: str = "medium"
    use_hardware: bool = True
    remove_metadata: bool = False
    custom_metadata: Optional[List[Tuple[str, str]]] = None


class VideoInfo(BaseModel):
    path: Path
    duration: float = 0.0
    width: int = 0
    height: int = 0
    bitrate: int = 0
    codec: str = "unknown"
    fps: float = 0.0
    size: int = 0
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[int] = None


class EncodingProgress(BaseModel):
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    current_time: float = 0.0
    fps: float = 0.0
    speed: str = "0x"
    bitrate: str = "0kbits/s"


class Job(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    input_path: Path
    output_path: Path
    video_info: VideoInfo
    settings: EncodingSettings
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def transition(
        self,
        status: JobStatus,
        *,
        progress: Optional[float] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Moves the job to ``status``; returns False if the move is not allowed.

        Terminal jobs never change again. Processing may only be entered from
        Pending (or refreshed while Processing with a new progress value).
        Completed and Failed may only be entered from Processing.
        """
        if self.status.is_terminal:
            return False
        if status == JobStatus.PROCESSING:
            if self.status not in (JobStatus.PENDING, JobStatus.PROCESSING):
                return False
            if self.started_at is None:
                self.started_at = _utcnow()
            self.progress = max(0.0, min(100.0, progress or 0.0))
        elif status in (JobStatus.COMPLETED, JobStatus.FAILED):
            if self.status != JobStatus.PROCESSING:
                return False
            if self.completed_at is None:
                self.completed_at = _utcnow()
            if status == JobStatus.COMPLETED:
                self.progress = 100.0
            else:
                self.error_message = error_message or "Unknown error"
        elif status != JobStatus.CANCELLED:
            return False
        self.status = status
        return True


class QueueStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    paused: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


class Session(BaseModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime
