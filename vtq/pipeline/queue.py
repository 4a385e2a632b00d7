"""Job queue: owns the job list and runs pending jobs under a concurrency ceiling.

Key responsibilities:
- Hold the mutable job collection behind a single lock; readers get copies
- Admit jobs through a counting gate (a Semaphore swapped whole on resize)
- Hold admitted jobs while the queue is paused (Condition, woken on resume)
- Run each job through the ffmpeg adapter, retrying once in software when a
  hardware encode fails
- Terminate ffmpeg when a running job is cancelled or removed
- Publish JobStatusChanged / JobProgressUpdated / QueueFinished on the EventBus
"""

import threading
import concurrent.futures
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from vtq.config.models import default_concurrency
from vtq.domain.errors import EncodeCancelled, TranscodeError
from vtq.domain.events import (
    ConcurrencyChanged,
    EncoderLogLine,
    HardwareFallback,
    JobAdded,
    JobProgressUpdated,
    JobRemoved,
    JobStatusChanged,
    QueueCleared,
    QueueFinished,
    QueuePaused,
    QueueResumed,
)
from vtq.domain.models import EncodingProgress, EncodingSettings, Job, JobStatus, QueueStats
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.ffmpeg import FFmpegAdapter


class JobQueue:
    """Transcode job queue.

    One instance is shared by every worker it spawns; the job list, the
    admission gate and the pause flag each have their own lock and no lock is
    held while ffmpeg runs.

    Args:
        ffmpeg_adapter: FFmpegAdapter (or anything with the same ``invoke`` /
            ``detect_hardware_encoders`` surface).
        event_bus: EventBus receiving queue events.
        max_concurrent: Initial concurrency ceiling (default: cores / 4).
    """

    def __init__(
        self,
        ffmpeg_adapter: FFmpegAdapter,
        event_bus: EventBus,
        max_concurrent: Optional[int] = None,
    ):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        limit = max_concurrent if max_concurrent is not None else default_concurrency()
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1 (got {limit})")

        # Job collection (also guards _cancel_events)
        self._jobs: List[Job] = []
        self._jobs_lock = threading.Lock()
        self._cancel_events: Dict[str, threading.Event] = {}

        # Admission gate, replaced whole by set_concurrency_limit()
        self._gate = threading.Semaphore(limit)
        self._limit = limit
        self._gate_lock = threading.Lock()

        # Pause flag
        self._paused = False
        self._pause_cond = threading.Condition()

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def _find(self, job_id: str) -> Optional[Job]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def add(self, job: Job) -> None:
        with self._jobs_lock:
            if self._find(job.id) is not None:
                raise ValueError(f"Job {job.id} is already queued")
            self._jobs.append(job)
            snapshot = job.model_copy(deep=True)
        self.logger.info(f"JOB_ADD: {job.id} {job.input_path.name} -> {job.output_path}")
        self.event_bus.publish(JobAdded(job=snapshot))

    def list_jobs(self) -> List[Job]:
        with self._jobs_lock:
            return [job.model_copy(deep=True) for job in self._jobs]

    def get(self, job_id: str) -> Optional[Job]:
        with self._jobs_lock:
            job = self._find(job_id)
            return job.model_copy(deep=True) if job else None

    def output_paths(self) -> List[Path]:
        with self._jobs_lock:
            return [job.output_path for job in self._jobs]

    def remove(self, job_id: str) -> bool:
        """Removes a job; a running encode for it is terminated."""
        with self._jobs_lock:
            job = self._find(job_id)
            if job is None:
                return False
            self._jobs.remove(job)
            cancel_event = self._cancel_events.get(job_id)
        if cancel_event is not None:
            cancel_event.set()
        self._wake_paused()
        self.logger.info(f"JOB_REMOVE: {job_id}")
        self.event_bus.publish(JobRemoved(job_id=job_id))
        return True

    def clear(self) -> None:
        with self._jobs_lock:
            self._jobs.clear()
            cancel_events = list(self._cancel_events.values())
        for cancel_event in cancel_events:
            cancel_event.set()
        self._wake_paused()
        self.logger.info("QUEUE_CLEAR")
        self.event_bus.publish(QueueCleared())

    def cancel_job(self, job_id: str) -> bool:
        """Marks a job Cancelled; terminates its ffmpeg process if it is running.

        Returns False if the job is unknown or already terminal.
        """
        with self._jobs_lock:
            job = self._find(job_id)
            if job is None or not job.transition(JobStatus.CANCELLED):
                return False
            cancel_event = self._cancel_events.get(job_id)
            snapshot = job.model_copy(deep=True)
        if cancel_event is not None:
            cancel_event.set()
        self._wake_paused()
        self.logger.info(f"JOB_CANCEL: {job_id} (running={cancel_event is not None})")
        self._publish_status(snapshot)
        return True

    def stats(self) -> QueueStats:
        with self._jobs_lock:
            statuses = [job.status for job in self._jobs]
        return QueueStats(
            total=len(statuses),
            pending=statuses.count(JobStatus.PENDING),
            processing=statuses.count(JobStatus.PROCESSING),
            paused=statuses.count(JobStatus.PAUSED),
            completed=statuses.count(JobStatus.COMPLETED),
            failed=statuses.count(JobStatus.FAILED),
            cancelled=statuses.count(JobStatus.CANCELLED),
        )

    # ------------------------------------------------------------------
    # Concurrency and pause control
    # ------------------------------------------------------------------

    @property
    def concurrency_limit(self) -> int:
        with self._gate_lock:
            return self._limit

    def set_concurrency_limit(self, limit: int) -> None:
        """Replaces the admission gate.

        Permits taken from the old gate stay valid until their jobs finish;
        nothing running is preempted.
        """
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1 (got {limit})")
        with self._gate_lock:
            old_limit = self._limit
            self._gate = threading.Semaphore(limit)
            self._limit = limit
        self.logger.info(f"CONCURRENCY: {old_limit} -> {limit}")
        self.event_bus.publish(ConcurrencyChanged(limit=limit))

    def _current_gate(self) -> threading.Semaphore:
        with self._gate_lock:
            return self._gate

    def pause(self) -> None:
        with self._pause_cond:
            self._paused = True
        self.logger.info("QUEUE_PAUSE")
        self.event_bus.publish(QueuePaused())

    def resume(self) -> None:
        with self._pause_cond:
            self._paused = False
            self._pause_cond.notify_all()
        self.logger.info("QUEUE_RESUME")
        self.event_bus.publish(QueueResumed())

    def is_paused(self) -> bool:
        with self._pause_cond:
            return self._paused

    def _wake_paused(self) -> None:
        with self._pause_cond:
            self._pause_cond.notify_all()

    def _is_abandoned(self, job_id: str) -> bool:
        with self._jobs_lock:
            job = self._find(job_id)
            return job is None or job.status == JobStatus.CANCELLED

    def _wait_while_paused(self, job_id: str) -> None:
        """Blocks while the queue is paused, unless the job is cancelled or removed meanwhile."""
        with self._pause_cond:
            if self._paused:
                self.logger.debug(f"JOB_PAUSED: {job_id} waiting for resume")
            self._pause_cond.wait_for(lambda: not self._paused or self._is_abandoned(job_id))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def process_all(self) -> None:
        """Runs every job that is Pending right now; returns when all of them finish.

        Jobs added while the batch runs are left for the next call. Admission
        order among the batch is not defined.
        """
        with self._jobs_lock:
            pending = [job for job in self._jobs if job.status == JobStatus.PENDING]
            job_ids = [job.id for job in pending]
            wants_hardware = any(job.settings.use_hardware for job in pending)

        if not job_ids:
            self.logger.info("BATCH: no pending jobs")
            self.event_bus.publish(QueueFinished())
            return

        # One snapshot of the hardware encoders for the whole batch
        hw_encoders = self.ffmpeg_adapter.detect_hardware_encoders() if wants_hardware else []

        start_time = time.monotonic()
        self.logger.info(f"BATCH_START: jobs={len(job_ids)} limit={self.concurrency_limit}")

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=len(job_ids),
            thread_name_prefix="vtq-job",
        ) as executor:
            futures = {
                executor.submit(self._process_job, job_id, hw_encoders): job_id
                for job_id in job_ids
            }
            for future in concurrent.futures.as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    self.logger.error(f"Worker for job {futures[future]} failed with exception: {e}")

        elapsed = time.monotonic() - start_time
        stats = self.stats()
        self.logger.info(
            f"BATCH_END: elapsed={elapsed:.2f}s completed={stats.completed} "
            f"failed={stats.failed} cancelled={stats.cancelled}"
        )
        self.event_bus.publish(QueueFinished())

    def _process_job(self, job_id: str, hw_encoders: Sequence[str]) -> None:
        gate = self._current_gate()
        gate.acquire()
        try:
            self._wait_while_paused(job_id)

            with self._jobs_lock:
                job = self._find(job_id)
                if job is None:
                    self.logger.info(f"JOB_SKIP: {job_id} (removed)")
                    return
                if job.status == JobStatus.CANCELLED:
                    self.logger.info(f"JOB_SKIP: {job_id} (cancelled)")
                    return
                # Admission only from Pending; an overlapping batch may hold the same id
                if job.status != JobStatus.PENDING or not job.transition(JobStatus.PROCESSING, progress=0.0):
                    self.logger.info(f"JOB_SKIP: {job_id} (status={job.status.value})")
                    return
                cancel_event = threading.Event()
                self._cancel_events[job_id] = cancel_event
                snapshot = job.model_copy(deep=True)

            self.logger.info(f"JOB_START: {job_id} {snapshot.input_path.name}")
            try:
                self._publish_status(snapshot)
                error = self._run_encode(snapshot, hw_encoders, cancel_event)
            except Exception as e:
                # Log exception but don't crash the batch
                self.logger.exception(f"Exception processing {snapshot.input_path.name}")
                error = TranscodeError(f"Exception: {e}")
            finally:
                with self._jobs_lock:
                    self._cancel_events.pop(job_id, None)

            self._finish(job_id, error)
        finally:
            gate.release()

    def _run_encode(
        self,
        job: Job,
        hw_encoders: Sequence[str],
        cancel_event: threading.Event,
    ) -> Optional[TranscodeError]:
        """Runs the encode, plus the one software retry. Returns the final error, if any."""
        try:
            self._invoke(job, job.settings, hw_encoders, cancel_event)
            return None
        except EncodeCancelled as e:
            return e
        except TranscodeError as e:
            if not job.settings.use_hardware:
                return e
            first_error = e

        if cancel_event.is_set():
            return EncodeCancelled(f"Job {job.id} cancelled before software retry")

        self.logger.warning(
            f"JOB_FALLBACK: {job.input_path.name} (hardware encode failed -> software): "
            f"{str(first_error).splitlines()[0]}"
        )
        self.event_bus.publish(HardwareFallback(job_id=job.id, error_message=str(first_error)))

        software_settings = job.settings.model_copy(update={"use_hardware": False})
        try:
            self._invoke(job, software_settings, hw_encoders, cancel_event)
            return None
        except TranscodeError as e:
            return e

    def _invoke(
        self,
        job: Job,
        settings: EncodingSettings,
        hw_encoders: Sequence[str],
        cancel_event: threading.Event,
    ) -> None:
        job_id = job.id

        def on_progress(progress: EncodingProgress) -> None:
            with self._jobs_lock:
                current = self._find(job_id)
                if current is None or not current.transition(
                    JobStatus.PROCESSING, progress=progress.percentage
                ):
                    return
            self.event_bus.publish(JobProgressUpdated(job_id=job_id, progress=progress))

        def on_log(line: str) -> None:
            self.event_bus.publish(EncoderLogLine(job_id=job_id, line=line))

        self.ffmpeg_adapter.invoke(
            job.input_path,
            job.output_path,
            settings,
            hw_encoders,
            job.video_info.duration,
            on_progress=on_progress,
            cancel_event=cancel_event,
            on_log=on_log,
        )

    def _finish(self, job_id: str, error: Optional[TranscodeError]) -> None:
        with self._jobs_lock:
            job = self._find(job_id)
            if job is None:
                self.logger.info(f"JOB_END: {job_id} (removed while running)")
                return
            if error is None:
                changed = job.transition(JobStatus.COMPLETED)
            elif isinstance(error, EncodeCancelled):
                changed = False
            else:
                changed = job.transition(JobStatus.FAILED, error_message=str(error))
            snapshot = job.model_copy(deep=True)

        self.logger.info(f"JOB_END: {job_id} status={snapshot.status.value}")
        if changed:
            self._publish_status(snapshot)

    def _publish_status(self, job: Job) -> None:
        self.event_bus.publish(JobStatusChanged(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            output_path=job.output_path if job.status == JobStatus.COMPLETED else None,
            error_message=job.error_message if job.status == JobStatus.FAILED else None,
        ))
