import logging
from pathlib import Path
from typing import Iterable, List, Optional
from pydantic import BaseModel, Field

from vtq.domain.errors import InvalidPathError, ProbeError, ValidationError
from vtq.domain.models import EncodingSettings, Job, VideoInfo
from vtq.infrastructure.ffmpeg import calculate_safe_bitrate, validate_resolution
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.file_scanner import FileScanner, DEFAULT_EXTENSIONS
from vtq.pipeline.queue import JobQueue
from vtq.utils.formatting import sanitize_filename, unique_filename


class EnqueueError(BaseModel):
    path: Path
    error_message: str


class EnqueueReport(BaseModel):
    """Outcome of a batch enqueue: jobs added plus files that were skipped."""

    jobs: List[Job] = Field(default_factory=list)
    errors: List[EnqueueError] = Field(default_factory=list)


class JobFactory:
    """Turns input files into queued jobs: probe, guard rails, unique output path."""

    def __init__(self, queue: JobQueue, ffprobe_adapter: FFprobeAdapter):
        self.queue = queue
        self.ffprobe_adapter = ffprobe_adapter
        self.logger = logging.getLogger(__name__)

    def _output_path(self, input_path: Path, output_dir: Path, settings: EncodingSettings) -> Path:
        name = sanitize_filename(f"{input_path.stem}.{settings.output_format}")
        return unique_filename(output_dir / name, taken=set(self.queue.output_paths()))

    def _apply_guard_rails(self, settings: EncodingSettings, info: VideoInfo) -> EncodingSettings:
        if settings.resolution:
            if info.width > 0 and info.height > 0:
                validate_resolution(settings.resolution, (info.width, info.height))
            else:
                self.logger.warning(f"GUARD: {info.path.name} has unknown dimensions, resolution not checked")

        if settings.bitrate:
            safe = calculate_safe_bitrate(settings.bitrate, info.bitrate)
            if safe != settings.bitrate:
                self.logger.info(
                    f"GUARD: {info.path.name} bitrate {settings.bitrate} capped to source {safe}"
                )
                settings = settings.model_copy(update={"bitrate": safe})
        return settings

    def create_job(
        self,
        input_path: Path,
        output_dir: Path,
        settings: EncodingSettings,
        video_info: Optional[VideoInfo] = None,
    ) -> Job:
        """Builds a Pending job without queueing it.

        Raises InvalidPathError, ProbeError or UpscaleError.
        """
        input_path = Path(input_path)
        output_dir = Path(output_dir)
        if not input_path.is_file():
            raise InvalidPathError(f"Input file does not exist: {input_path}")
        if output_dir.exists() and not output_dir.is_dir():
            raise InvalidPathError(f"Output path is not a directory: {output_dir}")

        info = video_info or self.ffprobe_adapter.probe(input_path)
        job_settings = self._apply_guard_rails(settings, info)
        output_dir.mkdir(parents=True, exist_ok=True)

        return Job(
            input_path=input_path,
            output_path=self._output_path(input_path, output_dir, job_settings),
            video_info=info,
            settings=job_settings,
        )

    def add_files(self, paths: Iterable[Path], output_dir: Path, settings: EncodingSettings) -> EnqueueReport:
        """Creates and queues one job per file; files that fail probing or validation are reported and skipped."""
        report = EnqueueReport()
        for path in paths:
            path = Path(path)
            try:
                job = self.create_job(path, output_dir, settings)
            except (ProbeError, ValidationError) as e:
                self.logger.error(f"ENQUEUE_SKIP: {path} - {e}")
                report.errors.append(EnqueueError(path=path, error_message=str(e)))
                continue
            self.queue.add(job)
            report.jobs.append(job.model_copy(deep=True))
        return report

    def add_directory(
        self,
        directory: Path,
        output_dir: Path,
        settings: EncodingSettings,
        recursive: bool = False,
        extensions: Optional[List[str]] = None,
    ) -> EnqueueReport:
        scanner = FileScanner(extensions or DEFAULT_EXTENSIONS, recursive=recursive)
        try:
            files = list(scanner.scan(directory))
        except NotADirectoryError as e:
            raise InvalidPathError(str(e)) from e
        self.logger.info(f"SCAN: {directory} found={len(files)} recursive={recursive}")
        return self.add_files(files, output_dir, settings)
