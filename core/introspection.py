"""
Parsers for the text output of the daemon's introspection tool.

The output format is not stable, so parsing is lenient: malformed input
yields empty or zero results, never an exception.
"""

from typing import List

from core.types import TrafficCounters

def parse_session_list(text: str) -> List[str]:
    """Return the first column of every non-blank line after the header."""
    if not text:
        return []
    identifiers = []
    for line in text.split("\n")[1:]:
        fields = line.split()
        if fields:
            identifiers.append(fields[0])
    return identifiers

def _parse_counter(value: str) -> int:
    try:
        return int(value.replace(",", ""))
    except ValueError:
        return 0

def parse_traffic_fields(text: str) -> TrafficCounters:
    """Extract ``(bytes_in, bytes_out)`` from ``RX:``/``TX:`` lines."""
    bytes_in = 0
    bytes_out = 0
    if not text:
        return bytes_in, bytes_out
    for line in text.split("\n"):
        line = line.strip()
        parts = line.split()
        if len(parts) < 2:
            continue
        if line.startswith("RX:"):
            bytes_in = _parse_counter(parts[1])
        elif line.startswith("TX:"):
            bytes_out = _parse_counter(parts[1])
    return bytes_in, bytes_out
