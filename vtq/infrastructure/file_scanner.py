import os
from pathlib import Path
from typing import List, Generator

DEFAULT_EXTENSIONS = [".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".mpg", ".mpeg"]

class FileScanner:
    """Scans a directory for video files."""

    def __init__(self, extensions: List[str], recursive: bool = True):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.recursive = recursive

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Scans the directory and yields video file paths."""
        root_dir = Path(root_dir)
        if not root_dir.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {root_dir}")

        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            if not self.recursive:
                dirs[:] = []
            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if file_path.suffix.lower() in self.extensions:
                    yield file_path
