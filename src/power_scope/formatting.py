"""Formatting utilities for CLI output."""

import time


def format_power(milliwatts: float) -> str:
    """Format a power reading.

    Returns:
        "523 mW" below one watt, "1.23 W" from one watt up
    """
    if milliwatts >= 1000:
        return f"{milliwatts / 1000:.2f} W"
    return f"{milliwatts:.0f} mW"


def format_megabytes(megabytes: float) -> str:
    """Format a size given in MB: "512 MB" or "1.5 GB"."""
    if megabytes >= 1024:
        return f"{megabytes / 1024:.1f} GB"
    return f"{megabytes:.0f} MB"


def format_frequencies(values: list[int]) -> str:
    """Format a list of core frequencies compactly: "972/1020/600 MHz"."""
    if not values:
        return "-"
    return "/".join(str(v) for v in values) + " MHz"


def format_age(timestamp: float, *, now: float | None = None) -> str:
    """Format how long ago ``timestamp`` was.

    Returns:
        "12s ago" under a minute, "3m ago" under an hour, "2h ago" otherwise
    """
    if now is None:
        now = time.time()
    age = max(0.0, now - timestamp)
    if age < 60:
        return f"{age:.0f}s ago"
    if age < 3600:
        return f"{age // 60:.0f}m ago"
    return f"{age // 3600:.0f}h ago"


def truncate(text: str, width: int) -> str:
    """Cut ``text`` to ``width`` characters, marking the cut with '..'."""
    if len(text) <= width:
        return text
    return text[: width - 2] + ".."
