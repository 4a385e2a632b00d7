"""Error taxonomy for the transcode queue.

Validation errors are raised before any process is launched. Probe errors
abort a single enqueue. Spawn, encode and cancellation errors are raised by the
ffmpeg adapter and recorded on the job by the queue.
"""

from typing import List, Optional


class TranscodeError(Exception):
    """Base class for all transcode pipeline errors."""

    pass


class ValidationError(TranscodeError):
    """Settings or paths rejected before launching ffmpeg."""

    pass


class UpscaleError(ValidationError):
    """Target resolution exceeds the source resolution."""

    def __init__(self, target, original):
        self.target = tuple(target)
        self.original = tuple(original)
        super().__init__(
            f"Cannot upscale video from {self.original[0]}x{self.original[1]} "
            f"to {self.target[0]}x{self.target[1]}"
        )


class InvalidPathError(ValidationError):
    pass


class ProbeError(TranscodeError):
    """ffprobe unavailable, failed, or returned unusable output."""

    pass


class SpawnError(TranscodeError):
    """ffmpeg could not be launched."""

    pass


class EncodeFailure(TranscodeError):
    """ffmpeg exited with a non-zero status."""

    def __init__(self, returncode: Optional[int], stderr_tail: Optional[List[str]] = None):
        self.returncode = returncode
        self.stderr_tail = list(stderr_tail or [])
        message = f"ffmpeg exited with code {returncode}"
        if self.stderr_tail:
            message += "\nLast {} lines of error log:\n{}".format(
                len(self.stderr_tail), "\n".join(self.stderr_tail)
            )
        super().__init__(message)


class EncodeCancelled(TranscodeError):
    """ffmpeg was terminated because its job was cancelled."""

    pass


class PersistenceError(Exception):
    """Session store operation failed."""

    pass
