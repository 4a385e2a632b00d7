import typer
import os
import threading
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from vtq.config.loader import load_config
from vtq.config.models import AppConfig, default_concurrency
from vtq.config.rate_control import format_bps_human, parse_bitrate
from vtq.domain.errors import InvalidPathError, PersistenceError, ProbeError
from vtq.domain.models import JobStatus
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.ffmpeg import FFmpegAdapter
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.logging import setup_logging
from vtq.infrastructure.session_store import SessionStore
from vtq.pipeline.job_factory import EnqueueReport, JobFactory
from vtq.pipeline.queue import JobQueue
from vtq.ui.dashboard import Dashboard
from vtq.ui.manager import UIManager
from vtq.ui.state import UIState
from vtq.utils.formatting import format_duration, format_file_size, parse_resolution

app = typer.Typer(help="VTQ (Video Transcode Queue) - bounded-concurrency ffmpeg batch encoder")
console = Console()

_STATUS_COLORS = {
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "magenta",
}


def _load_app_config(config_path: Optional[Path]) -> AppConfig:
    if config_path is None or not config_path.exists():
        return AppConfig()
    try:
        return load_config(config_path)
    except (ValueError, OSError) as e:
        typer.secho(f"Error: invalid config {config_path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _print_summary(queue: JobQueue) -> None:
    table = Table(title="Transcode summary")
    table.add_column("File")
    table.add_column("Status", no_wrap=True)
    table.add_column("Output")
    table.add_column("Size", justify="right")
    table.add_column("Details")
    for job in queue.list_jobs():
        color = _STATUS_COLORS.get(job.status, "white")
        size = ""
        if job.status == JobStatus.COMPLETED and job.output_path.exists():
            size = format_file_size(job.output_path.stat().st_size)
        details = ""
        if job.error_message:
            details = job.error_message.splitlines()[0]
        table.add_row(
            job.input_path.name,
            f"[{color}]{job.status.value}[/{color}]",
            job.output_path.name,
            size,
            details,
        )
    console.print(table)


def _print_enqueue_errors(report: EnqueueReport) -> None:
    for error in report.errors:
        typer.secho(f"Skipped {error.path}: {error.error_message}", fg=typer.colors.YELLOW, err=True)


@app.command()
def encode(
    inputs: List[Path] = typer.Argument(..., help="Video files and/or directories to transcode"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for encoded files"),
    config_path: Optional[Path] = typer.Option(Path("conf/vtq.yaml"), "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Maximum concurrent encodes"),
    codec: Optional[str] = typer.Option(None, "--codec", help="Video codec (e.g. libx264, libx265)"),
    audio_codec: Optional[str] = typer.Option(None, "--audio-codec", help="Audio codec (e.g. aac)"),
    crf: Optional[int] = typer.Option(None, "--crf", min=0, max=51, help="Quality factor for software encodes"),
    bitrate: Optional[str] = typer.Option(None, "--bitrate", help="Target video bitrate (e.g. 4500k, 4.5M)"),
    resolution: Optional[str] = typer.Option(None, "--resolution", help="Target resolution WIDTHxHEIGHT or a preset (4K, 1080p, 720p, 480p, 360p)"),
    preset: Optional[str] = typer.Option(None, "--preset", help="Encoder speed preset"),
    gpu: Optional[bool] = typer.Option(None, "--gpu/--cpu", help="Prefer/avoid hardware encoders"),
    recursive: Optional[bool] = typer.Option(None, "--recursive/--no-recursive", help="Descend into subdirectories"),
    session: Optional[str] = typer.Option(None, "--session", help="Save the finished queue as a named session"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Transcode the given files and directories with bounded concurrency."""
    config = _load_app_config(config_path)

    # CLI overrides
    general = config.general
    if threads: general.max_concurrent = threads
    if recursive is not None: general.recursive = recursive
    if log_path is not None: general.log_path = str(log_path)
    if debug: general.debug = True

    overrides = {}
    if codec: overrides["video_codec"] = codec
    if audio_codec: overrides["audio_codec"] = audio_codec
    if crf is not None: overrides["crf"] = crf
    if preset: overrides["preset"] = preset
    if gpu is not None: overrides["use_hardware"] = gpu
    try:
        if bitrate: overrides["bitrate"] = parse_bitrate(bitrate)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if resolution:
        parsed = parse_resolution(resolution)
        if parsed is None:
            typer.secho(f"Error: invalid resolution '{resolution}' (expected WIDTHxHEIGHT or a preset name)", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        overrides["resolution"] = parsed
    settings = config.encoding.model_copy(update=overrides)

    if output_dir is None:
        output_dir = Path(general.output_dir) if general.output_dir else Path.cwd() / "vtq_out"

    log_file = Path(general.log_path) if general.log_path else None
    logger = setup_logging(output_dir, debug=general.debug, log_path=log_file)
    logger.info(f"VTQ started: inputs={len(inputs)}, output_dir={output_dir}")
    logger.info(
        f"Config: max_concurrent={general.resolved_concurrency()}, codec={settings.video_codec}, "
        f"crf={settings.crf}, bitrate={settings.bitrate}, hw={settings.use_hardware}, debug={general.debug}"
    )

    ffmpeg = FFmpegAdapter()
    ffprobe = FFprobeAdapter()
    if not ffmpeg.check_available() or not ffprobe.check_available():
        typer.secho("Error: ffmpeg/ffprobe not found on PATH.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    bus = EventBus()
    ui_state = UIState()
    UIManager(bus, ui_state)
    queue = JobQueue(ffmpeg, bus, max_concurrent=general.resolved_concurrency())
    ui_state.concurrency_limit = queue.concurrency_limit
    factory = JobFactory(queue, ffprobe)

    for item in inputs:
        try:
            if item.is_dir():
                report = factory.add_directory(
                    item, output_dir, settings,
                    recursive=general.recursive, extensions=general.extensions,
                )
            else:
                report = factory.add_files([item], output_dir, settings)
        except InvalidPathError as e:
            typer.secho(f"Skipped {item}: {e}", fg=typer.colors.YELLOW, err=True)
            continue
        _print_enqueue_errors(report)

    if queue.stats().total == 0:
        typer.secho("No files to process.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=0)

    worker = threading.Thread(target=queue.process_all, name="vtq-batch", daemon=True)
    try:
        with Dashboard(ui_state, console=console):
            worker.start()
            while worker.is_alive():
                worker.join(timeout=0.2)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user, cancelling remaining jobs")
        for job in queue.list_jobs():
            queue.cancel_job(job.id)
        if worker.is_alive():
            worker.join()
        typer.secho("\nTranscode stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)

    _print_summary(queue)

    if session:
        try:
            store = SessionStore(general.session_db)
            saved = store.create_session(session)
            store.save_jobs(saved.id, queue.list_jobs())
            typer.secho(f"Session '{session}' saved (id={saved.id})", fg=typer.colors.GREEN)
        except PersistenceError as e:
            logger.error(f"SESSION_SAVE: {e}")
            typer.secho(f"Error: could not save session: {e}", fg=typer.colors.RED, err=True)

    stats = queue.stats()
    logger.info(f"VTQ finished: completed={stats.completed} failed={stats.failed} cancelled={stats.cancelled}")
    if stats.failed:
        raise typer.Exit(code=1)


@app.command()
def info():
    """Show ffmpeg availability, hardware encoders and the default concurrency."""
    ffmpeg = FFmpegAdapter()
    ffprobe = FFprobeAdapter()
    ffmpeg_ok = ffmpeg.check_available()

    table = Table(show_header=False, box=None)
    table.add_row("ffmpeg", "[green]available[/green]" if ffmpeg_ok else "[red]missing[/red]")
    table.add_row("ffprobe", "[green]available[/green]" if ffprobe.check_available() else "[red]missing[/red]")
    hw = ffmpeg.detect_hardware_encoders() if ffmpeg_ok else []
    table.add_row("Hardware encoders", ", ".join(hw) if hw else "none")
    table.add_row("CPU cores", str(os.cpu_count() or 1))
    table.add_row("Default concurrency", str(default_concurrency()))
    console.print(table)


@app.command()
def probe(file: Path = typer.Argument(..., help="Video file to inspect")):
    """Print the stream metadata ffprobe reports for a file."""
    try:
        video = FFprobeAdapter().probe(file)
    except ProbeError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(show_header=False, box=None)
    table.add_row("File", str(video.path))
    table.add_row("Duration", format_duration(video.duration))
    table.add_row("Resolution", f"{video.width}x{video.height}")
    table.add_row("Video", f"{video.codec} @ {video.fps:.2f} fps")
    table.add_row("Bitrate", format_bps_human(video.bitrate) if video.bitrate else "unknown")
    table.add_row("Audio", video.audio_codec or "none")
    table.add_row("Size", format_file_size(video.size))
    console.print(table)


@app.command()
def sessions(
    config_path: Optional[Path] = typer.Option(Path("conf/vtq.yaml"), "--config", "-c", help="Path to YAML config"),
    delete: Optional[int] = typer.Option(None, "--delete", help="Delete the session with this id"),
):
    """List stored sessions (most recently updated first)."""
    config = _load_app_config(config_path)
    try:
        store = SessionStore(config.general.session_db)
        if delete is not None:
            store.delete_session(delete)
            typer.secho(f"Session {delete} deleted", fg=typer.colors.GREEN)
            return
        stored = store.list_sessions()
        table = Table(title="Sessions")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Jobs", justify="right")
        table.add_column("Updated")
        for s in stored:
            jobs = store.load_jobs(s.id)
            table.add_row(str(s.id), s.name, str(len(jobs)), s.updated_at.strftime("%Y-%m-%d %H:%M:%S"))
    except PersistenceError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    console.print(table)


if __name__ == "__main__":
    app()
