import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from vtq.domain.models import EncodingProgress, JobStatus


@dataclass
class JobRow:
    job_id: str
    name: str
    status: JobStatus = JobStatus.PENDING
    percentage: float = 0.0
    fps: float = 0.0
    speed: str = "0x"
    bitrate: str = "0kbits/s"
    error_message: Optional[str] = None
    fallback: bool = False


class UIState:
    """Thread-safe view model for the terminal dashboard."""

    def __init__(self, log_lines: int = 5):
        self._lock = threading.RLock()
        self._rows: Dict[str, JobRow] = {}
        self.recent_log: deque = deque(maxlen=log_lines)
        self.paused = False
        self.concurrency_limit = 0
        self.finished = False
        self.start_time: Optional[datetime] = None

    def add_job(self, job_id: str, name: str) -> None:
        with self._lock:
            self._rows[job_id] = JobRow(job_id=job_id, name=name)

    def remove_job(self, job_id: str) -> None:
        with self._lock:
            self._rows.pop(job_id, None)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def update_progress(self, job_id: str, progress: EncodingProgress) -> None:
        with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                return
            row.percentage = progress.percentage
            row.fps = progress.fps
            row.speed = progress.speed
            row.bitrate = progress.bitrate

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        percentage: float,
        error_message: Optional[str] = None,
    ) -> None:
        with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                return
            row.status = status
            row.percentage = percentage
            row.error_message = error_message

    def mark_fallback(self, job_id: str) -> None:
        with self._lock:
            row = self._rows.get(job_id)
            if row is not None:
                row.fallback = True

    def add_log_line(self, name: str, line: str) -> None:
        with self._lock:
            self.recent_log.append(f"{name}: {line}")

    def rows(self) -> List[JobRow]:
        with self._lock:
            return [JobRow(**vars(row)) for row in self._rows.values()]

    def name_for(self, job_id: str) -> str:
        with self._lock:
            row = self._rows.get(job_id)
            return row.name if row else job_id[:8]

    def counts(self) -> Dict[JobStatus, int]:
        with self._lock:
            counts = {status: 0 for status in JobStatus}
            for row in self._rows.values():
                counts[row.status] += 1
            return counts

    def log_lines(self) -> List[str]:
        with self._lock:
            return list(self.recent_log)
