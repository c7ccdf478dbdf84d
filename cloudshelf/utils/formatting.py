"""
Helper functions for converting sizes between bytes and human-readable strings.
"""

import re

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
    "T": 1024**4,
    "TB": 1024**4,
}
_SIZE_PATTERN = re.compile(r"^\s*(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]*)\s*$")


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def parse_size(value: str | int) -> int:
    """
    Parses a size such as '8G', '500 MB' or '1048576' into a number of bytes.

    Units are binary (1K = 1024 bytes) and case-insensitive. Raises ValueError
    for anything that is not a non-negative size.
    """
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Size cannot be negative: {value}")
        return value

    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size: '{value}'")

    unit = match.group("unit").upper()
    if unit.endswith("IB"):
        unit = unit[:-2] + "B"
    if unit not in _SIZE_UNITS:
        raise ValueError(f"Unknown size unit '{match.group('unit')}' in '{value}'")
    return int(float(match.group("num")) * _SIZE_UNITS[unit])
