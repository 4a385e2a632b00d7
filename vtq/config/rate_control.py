"""Helpers for parsing and displaying bitrate values ("4500k", "4.5M", "8Mbps")."""

from __future__ import annotations

import re
from typing import Any, Dict

_RATE_PATTERN = re.compile(r"^(?P<number>\d+(?:\.\d+)?)(?P<suffix>[A-Za-z/]*)$")
_SUFFIX_MULTIPLIERS: Dict[str, float] = {
    "": 1.0,
    "bps": 1.0,
    "k": 1_000.0,
    "kbps": 1_000.0,
    "kbit/s": 1_000.0,
    "kbits/s": 1_000.0,
    "m": 1_000_000.0,
    "mbps": 1_000_000.0,
    "mbit/s": 1_000_000.0,
    "g": 1_000_000_000.0,
    "gbps": 1_000_000_000.0,
}


def _format_float(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def format_bps_human(bps: int) -> str:
    if bps >= 1_000_000:
        return f"{_format_float(bps / 1_000_000)} Mbps"
    if bps >= 1_000:
        return f"{_format_float(bps / 1_000)} kbps"
    return f"{bps} bps"


def parse_bitrate(raw_value: Any) -> int:
    """Parses a bitrate into bits per second."""
    text = str(raw_value).strip()
    if not text:
        raise ValueError("Bitrate cannot be empty.")

    compact = text.replace(" ", "")
    match = _RATE_PATTERN.fullmatch(compact)
    if not match:
        raise ValueError(
            f"Invalid bitrate '{text}'. Use numeric bps or suffixes like k, M, Mbps."
        )

    number = float(match.group("number"))
    suffix = match.group("suffix").lower()
    if suffix not in _SUFFIX_MULTIPLIERS:
        raise ValueError(
            f"Unsupported bitrate suffix '{suffix}' in '{text}'. Supported: k, M, G, kbps, Mbps, bps."
        )

    bitrate_bps = int(round(number * _SUFFIX_MULTIPLIERS[suffix]))
    if bitrate_bps <= 0:
        raise ValueError(f"Bitrate must be > 0 (got '{text}').")
    return bitrate_bps


def to_ffmpeg_rate(bps: int) -> str:
    """ffmpeg ``-b:v`` value in whole kilobits ("4500k"), never below 1k."""
    return f"{max(1, bps // 1000)}k"
