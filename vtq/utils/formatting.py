"""Small path and display helpers shared by the job factory and the CLI."""

from pathlib import Path
from typing import Collection, List, Optional, Tuple

RESOLUTION_PRESETS: List[Tuple[str, Tuple[int, int]]] = [
    ("4K (3840x2160)", (3840, 2160)),
    ("1080p (1920x1080)", (1920, 1080)),
    ("720p (1280x720)", (1280, 720)),
    ("480p (854x480)", (854, 480)),
    ("360p (640x360)", (640, 360)),
]

_INVALID_FILENAME_CHARS = set('/\\:*?"<>|')


def unique_filename(path: Path, taken: Collection[Path] = ()) -> Path:
    """Returns ``path`` or, if it exists, the first free ``stem_N.ext`` beside it.

    Paths in ``taken`` count as existing (outputs reserved by queued jobs).
    """
    path = Path(path)
    if not path.exists() and path not in taken:
        return path

    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not candidate.exists() and candidate not in taken:
            return candidate
        counter += 1


def sanitize_filename(filename: str) -> str:
    return "".join("_" if c in _INVALID_FILENAME_CHARS else c for c in filename)


def parse_resolution(text: str) -> Optional[Tuple[int, int]]:
    """Parses ``"1920x1080"`` or a preset name such as ``"720p"``; returns None for anything else."""
    value = str(text).strip().lower()
    for label, dimensions in RESOLUTION_PRESETS:
        if value == label.split(" ")[0].lower():
            return dimensions
    parts = value.split("x")
    if len(parts) != 2:
        return None
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height


def format_file_size(size_bytes: int) -> str:
    if size_bytes == 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1
    return f"{size:.2f} {units[unit_index]}"


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def calculate_bitrate(size_bytes: int, duration_seconds: float) -> int:
    """Average bitrate in bits/s, 0 when the duration is unknown."""
    if duration_seconds <= 0:
        return 0
    return int((size_bytes * 8.0) / duration_seconds)
