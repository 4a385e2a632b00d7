import subprocess
import json
from pathlib import Path
from typing import Any, Dict, Optional
from vtq.domain.errors import ProbeError
from vtq.domain.models import VideoInfo

class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, ffprobe_bin: str = "ffprobe"):
        self.ffprobe_bin = ffprobe_bin

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    @classmethod
    def _parse_frame_rate(cls, value: Any) -> float:
        text = str(value or "")
        if "/" in text:
            num_text, den_text = text.split("/", 1)
            num = cls._to_float(num_text)
            den = cls._to_float(den_text)
            if den == 0:
                return 0.0
            return num / den
        return cls._to_float(text)

    def check_available(self) -> bool:
        try:
            result = subprocess.run([self.ffprobe_bin, "-version"], capture_output=True)
        except OSError:
            return False
        return result.returncode == 0

    def _run(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_bin,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(file_path)
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeError(
                f"Failed to execute ffprobe. Make sure ffprobe is installed and in PATH ({e})"
            ) from e
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr}")

        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output for {file_path}: {e}") from e

    def probe(self, file_path: Path) -> VideoInfo:
        """Executes ffprobe and returns the source's VideoInfo."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise ProbeError(f"File does not exist: {file_path}")
        size = file_path.stat().st_size

        data = self._run(file_path)
        streams = data.get("streams") or []

        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeError(f"No video stream found in {file_path}")
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

        # Duration fallback order: format.duration, format tags, stream.duration, stream tags
        fmt = data.get("format") or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))

        bitrate = self._to_int(fmt.get("bit_rate"))
        if bitrate is None:
            bitrate = self._to_int(video_stream.get("bit_rate")) or 0

        return VideoInfo(
            path=file_path,
            duration=duration,
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
            bitrate=bitrate,
            codec=video_stream.get("codec_name", "unknown"),
            fps=self._parse_frame_rate(video_stream.get("r_frame_rate")),
            size=size,
            audio_codec=audio_stream.get("codec_name") if audio_stream else None,
            audio_bitrate=self._to_int(audio_stream.get("bit_rate")) if audio_stream else None,
        )
