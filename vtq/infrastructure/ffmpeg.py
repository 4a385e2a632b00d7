import subprocess
import re
import logging
import time
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Iterable, List, Optional, Sequence, Tuple
from vtq.config.rate_control import to_ffmpeg_rate
from vtq.domain.models import EncodingProgress, EncodingSettings
from vtq.domain.errors import EncodeCancelled, EncodeFailure, SpawnError, UpscaleError

# Known hardware encoders, per vendor family.
HARDWARE_ENCODERS = (
    "h264_nvenc",
    "hevc_nvenc",
    "h264_qsv",
    "hevc_qsv",
    "h264_vaapi",
    "hevc_vaapi",
)

# Software codec -> hardware candidates in priority order (NVENC > QSV > VAAPI).
_HW_EQUIVALENTS = {
    "libx264": ("h264_nvenc", "h264_qsv", "h264_vaapi"),
    "h264": ("h264_nvenc", "h264_qsv", "h264_vaapi"),
    "libx265": ("hevc_nvenc", "hevc_qsv", "hevc_vaapi"),
    "hevc": ("hevc_nvenc", "hevc_qsv", "hevc_vaapi"),
}

_HW_MARKERS = ("nvenc", "qsv", "vaapi")

STDERR_TAIL_LINES = 20

_TIME_RE = re.compile(r"out_time_ms=(\d+)")
_FPS_RE = re.compile(r"fps=([\d.]+)")
_SPEED_RE = re.compile(r"speed=([\d.]+)x")
_BITRATE_RE = re.compile(r"bitrate=([\d.]+)kbits/s")

ProgressCallback = Callable[[EncodingProgress], None]
LogCallback = Callable[[str], None]


def is_hardware_encoder(encoder: str) -> bool:
    return any(marker in encoder for marker in _HW_MARKERS)


def select_encoder(settings: EncodingSettings, hw_encoders: Sequence[str]) -> str:
    """Picks the video encoder for ``settings`` given the detected hardware encoders."""
    if not settings.use_hardware or not hw_encoders:
        return settings.video_codec

    for candidate in _HW_EQUIVALENTS.get(settings.video_codec, ()):
        if candidate in hw_encoders:
            return candidate
    return settings.video_codec


def validate_resolution(target: Tuple[int, int], original: Tuple[int, int]) -> Tuple[int, int]:
    """Returns ``target`` unchanged, or raises UpscaleError if it exceeds ``original``."""
    if target[0] > original[0] or target[1] > original[1]:
        raise UpscaleError(target, original)
    return target


def calculate_safe_bitrate(target: int, original: int) -> int:
    """Caps ``target`` at the source bitrate so re-encoding never inflates it."""
    if target > original and original > 0:
        return original
    return target


def estimate_output_size(bitrate: int, duration: float) -> int:
    """Estimated output size in bytes for ``bitrate`` bits/s over ``duration`` seconds."""
    return int((bitrate * duration) / 8.0)


def parse_progress(line: str, total_duration: float) -> Optional[EncodingProgress]:
    """Parses ffmpeg ``-progress`` output.

    Returns None when the text carries no ``out_time_ms`` value.
    """
    time_match = _TIME_RE.search(line)
    if not time_match:
        return None

    current_time = int(time_match.group(1)) / 1_000_000.0  # microseconds
    if total_duration > 0:
        percentage = min(100.0, (current_time / total_duration) * 100.0)
    else:
        percentage = 0.0

    fps_match = _FPS_RE.search(line)
    try:
        fps = float(fps_match.group(1)) if fps_match else 0.0
    except ValueError:
        fps = 0.0

    speed_match = _SPEED_RE.search(line)
    speed = f"{speed_match.group(1)}x" if speed_match else "0x"

    bitrate_match = _BITRATE_RE.search(line)
    bitrate = f"{bitrate_match.group(1)}kbits/s" if bitrate_match else "0kbits/s"

    return EncodingProgress(
        percentage=percentage,
        current_time=current_time,
        fps=fps,
        speed=speed,
        bitrate=bitrate,
    )


class FFmpegAdapter:
    """Wrapper around ffmpeg: command construction and process supervision."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", terminate_timeout: float = 3.0, poll_interval: float = 0.1):
        self.ffmpeg_bin = ffmpeg_bin
        self.terminate_timeout = terminate_timeout
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> bool:
        try:
            result = subprocess.run([self.ffmpeg_bin, "-version"], capture_output=True)
        except OSError:
            return False
        return result.returncode == 0

    def detect_hardware_encoders(self) -> List[str]:
        """Queries ffmpeg for compiled encoders and returns the known hardware ones."""
        try:
            result = subprocess.run(
                [self.ffmpeg_bin, "-encoders", "-hide_banner"],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            self.logger.warning(f"HW_DETECT: ffmpeg unavailable ({e})")
            return []

        names = set()
        for line in (result.stdout or "").splitlines():
            parts = line.split()
            if len(parts) >= 2:
                names.add(parts[1])

        found = [encoder for encoder in HARDWARE_ENCODERS if encoder in names]
        self.logger.info(f"HW_DETECT: {', '.join(found) if found else 'none'}")
        return found

    def build_command(
        self,
        input_path: Path,
        output_path: Path,
        settings: EncodingSettings,
        hw_encoders: Sequence[str],
    ) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        encoder = select_encoder(settings, hw_encoders)
        cmd = [
            self.ffmpeg_bin,
            "-i", str(input_path),
            "-y",  # Overwrite output files
            "-c:v", encoder,
            "-pix_fmt", "yuv420p",
        ]

        if settings.resolution:
            width, height = settings.resolution
            cmd.extend(["-vf", f"scale={width}:{height}"])
        else:
            # Keep source size, rounded down to even dimensions
            cmd.extend(["-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2"])

        if settings.bitrate:
            cmd.extend(["-b:v", to_ffmpeg_rate(settings.bitrate)])
        elif settings.crf is not None and not is_hardware_encoder(encoder):
            # Hardware encoders reject -crf
            cmd.extend(["-crf", str(settings.crf)])

        cmd.extend(["-preset", settings.preset])
        cmd.extend(["-c:a", settings.audio_codec])

        if settings.remove_metadata:
            cmd.extend(["-map_metadata", "-1"])
        for key, value in settings.custom_metadata or []:
            cmd.extend(["-metadata", f"{key}={value}"])

        cmd.extend(["-progress", "pipe:1"])
        cmd.append(str(output_path))
        return cmd

    def invoke(
        self,
        input_path: Path,
        output_path: Path,
        settings: EncodingSettings,
        hw_encoders: Sequence[str],
        total_duration: float,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        on_log: Optional[LogCallback] = None,
    ) -> None:
        """Runs one encode to completion.

        Raises SpawnError if ffmpeg cannot start, EncodeCancelled if
        ``cancel_event`` was set while it ran, EncodeFailure on a non-zero exit.
        """
        filename = Path(input_path).name
        start_time = time.monotonic()
        cmd = self.build_command(input_path, output_path, settings, hw_encoders)
        encoder = cmd[cmd.index("-c:v") + 1]

        self.logger.info(f"FFMPEG_START: {filename} (encoder={encoder}, hw={settings.use_hardware})")
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            self.logger.error(f"FFMPEG_SPAWN_FAILED: {filename} - {e}")
            raise SpawnError(f"Failed to spawn ffmpeg process: {e}") from e

        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        readers = [
            threading.Thread(
                target=self._consume_progress,
                args=(process.stdout, total_duration, on_progress),
                name=f"ffmpeg-stdout-{filename}",
                daemon=True,
            ),
            threading.Thread(
                target=self._consume_diagnostics,
                args=(process.stderr, stderr_tail, on_log),
                name=f"ffmpeg-stderr-{filename}",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        cancelled = self._wait(process, cancel_event)

        # Drain both pipes so no trailing progress or log line is lost
        for reader in readers:
            reader.join()

        elapsed = time.monotonic() - start_time
        if cancelled:
            self._remove_partial(output_path)
            self.logger.info(f"FFMPEG_END: {filename} status=cancelled elapsed={elapsed:.2f}s")
            raise EncodeCancelled(f"Encoding of {filename} was cancelled")

        if process.returncode != 0:
            self._remove_partial(output_path)
            self.logger.info(f"FFMPEG_END: {filename} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise EncodeFailure(process.returncode, list(stderr_tail))

        self.logger.info(f"FFMPEG_END: {filename} status=completed elapsed={elapsed:.2f}s")

    def _wait(self, process: subprocess.Popen, cancel_event: Optional[threading.Event]) -> bool:
        """Waits for exit; terminates ffmpeg if ``cancel_event`` fires. Returns True if cancelled."""
        if cancel_event is None:
            process.wait()
            return False

        while True:
            if cancel_event.is_set():
                process.terminate()
                try:
                    process.wait(timeout=self.terminate_timeout)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
                return True
            try:
                process.wait(timeout=self.poll_interval)
                return False
            except subprocess.TimeoutExpired:
                continue

    def _consume_progress(
        self,
        stream: Optional[Iterable[str]],
        total_duration: float,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        """Reads ``-progress pipe:1`` output.

        ffmpeg writes one key=value pair per line and closes each report with a
        ``progress=continue|end`` line, so pairs are collected per report.
        """
        if stream is None:
            return
        block: List[str] = []
        for raw in stream:
            line = raw.strip()
            if not line:
                continue
            block.append(line)
            if line.startswith("progress="):
                self._emit_progress(" ".join(block), total_duration, on_progress)
                block = []
        if block:
            self._emit_progress(" ".join(block), total_duration, on_progress)

    def _emit_progress(self, text: str, total_duration: float, on_progress: Optional[ProgressCallback]) -> None:
        progress = parse_progress(text, total_duration)
        if progress is None or on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception:
            # Keep draining stdout or ffmpeg blocks on a full pipe
            self.logger.exception("Progress callback failed")

    def _consume_diagnostics(
        self,
        stream: Optional[Iterable[str]],
        tail: Deque[str],
        on_log: Optional[LogCallback],
    ) -> None:
        if stream is None:
            return
        for raw in stream:
            line = raw.rstrip("\r\n").strip()
            if not line:
                continue
            tail.append(line)
            self.logger.debug(f"FFMPEG_LOG: {line}")
            if on_log is not None:
                try:
                    on_log(line)
                except Exception:
                    self.logger.exception("Log callback failed")

    def _remove_partial(self, output_path: Path) -> None:
        path = Path(output_path)
        if path.exists():
            try:
                path.unlink()
            except OSError as e:
                self.logger.warning(f"Failed to remove partial output {path}: {e}")
