from vtq.infrastructure.event_bus import EventBus
from vtq.ui.state import UIState
from vtq.domain.events import (
    ConcurrencyChanged, EncoderLogLine, HardwareFallback, JobAdded, JobProgressUpdated,
    JobRemoved, JobStatusChanged, QueueCleared, QueueFinished, QueuePaused, QueueResumed,
)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobAdded, self.on_job_added)
        self.bus.subscribe(JobRemoved, self.on_job_removed)
        self.bus.subscribe(QueueCleared, self.on_queue_cleared)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobStatusChanged, self.on_job_status)
        self.bus.subscribe(HardwareFallback, self.on_hardware_fallback)
        self.bus.subscribe(EncoderLogLine, self.on_log_line)
        self.bus.subscribe(QueuePaused, self.on_paused)
        self.bus.subscribe(QueueResumed, self.on_resumed)
        self.bus.subscribe(ConcurrencyChanged, self.on_concurrency_changed)
        self.bus.subscribe(QueueFinished, self.on_queue_finished)

    def on_job_added(self, event: JobAdded):
        self.state.add_job(event.job.id, event.job.input_path.name)

    def on_job_removed(self, event: JobRemoved):
        self.state.remove_job(event.job_id)

    def on_queue_cleared(self, event: QueueCleared):
        self.state.clear()

    def on_job_progress(self, event: JobProgressUpdated):
        self.state.update_progress(event.job_id, event.progress)

    def on_job_status(self, event: JobStatusChanged):
        self.state.update_status(event.job_id, event.status, event.progress, event.error_message)

    def on_hardware_fallback(self, event: HardwareFallback):
        self.state.mark_fallback(event.job_id)
        self.state.add_log_line(self.state.name_for(event.job_id), "hardware encode failed, retrying in software")

    def on_log_line(self, event: EncoderLogLine):
        self.state.add_log_line(self.state.name_for(event.job_id), event.line)

    def on_paused(self, event: QueuePaused):
        self.state.paused = True

    def on_resumed(self, event: QueueResumed):
        self.state.paused = False

    def on_concurrency_changed(self, event: ConcurrencyChanged):
        self.state.concurrency_limit = event.limit

    def on_queue_finished(self, event: QueueFinished):
        self.state.finished = True
