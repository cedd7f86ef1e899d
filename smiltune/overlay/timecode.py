"""
Time Codec

Parses and formats SMIL clock values used by clipBegin/clipEnd and by
the media:duration metadata of the package document.
"""

import re

from smiltune.utils import logger

# Metric suffixes accepted after a number, longest first so "ms" wins over "s"
_METRIC_UNITS = (
    ("ms", 0.001),
    ("min", 60.0),
    ("h", 3600.0),
    ("s", 1.0),
)

_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def _to_float(text: str) -> float:
    if not _NUMBER.match(text):
        raise ValueError(text)
    return float(text)


def _parse_strict(literal: str) -> float:
    """Parse a clock value, raising ValueError when it is malformed."""
    value = literal.strip()
    if not value:
        raise ValueError(literal)

    if ":" in value:
        # H:MM:SS.mmm or MM:SS.mmm, weights of 60 from the right
        parts = value.split(":")
        if len(parts) > 3:
            raise ValueError(literal)
        total = 0.0
        for part in parts:
            total = total * 60 + _to_float(part)
        return total

    for suffix, factor in _METRIC_UNITS:
        if value.endswith(suffix):
            return _to_float(value[: -len(suffix)].strip()) * factor

    return _to_float(value)


def parse_clock_value(literal: str) -> float:
    """
    Parse a clip-time literal into seconds.

    Accepts "12.34", "12.34s", "1500ms", "2min", "1h" and clock values
    such as "0:01:02.500". Anything else yields 0.0 and a warning so that
    editing can continue.

    Args:
        literal: The attribute text

    Returns:
        Time in seconds
    """
    try:
        return _parse_strict(literal or "")
    except ValueError:
        logger.warning(f"Unparseable clock value {literal!r}, using 0")
        return 0.0


def format_duration(seconds: float) -> str:
    """Format seconds as a zero padded HH:MM:SS.ss clock value."""
    centis = int(round(max(seconds, 0.0) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    secs = centis / 100
    return f"{hours:02d}:{minutes:02d}:{secs:05.2f}"


def format_clip_value(seconds: float, precision: int = 3) -> str:
    """Format seconds as a timecount value for clipBegin/clipEnd."""
    value = round(max(seconds, 0.0), precision)
    return f"{value:.{precision}f}s"
