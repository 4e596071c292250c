import re
from typing import Union

_IEC_LABELS = ["B", "KiB", "MiB", "GiB", "TiB"]
_SI_LABELS = ["B", "KB", "MB", "GB", "TB"]

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgt]?)(i?b?)\s*$", re.IGNORECASE)
_EXPONENTS = {"": 0, "k": 1, "m": 2, "g": 3, "t": 4}


def bytes_to_human(byte_count: Union[int, float, None], system: str = "IEC") -> str:
    """Render a byte count for chat and console output.

    'IEC' uses base 1024 (KiB, MiB, ...), 'SI' base 1000 (KB, MB, ...).
    """
    if byte_count is None:
        return "N/A"
    try:
        value = max(float(byte_count), 0.0)
    except (ValueError, TypeError):
        return "N/A"
    if value == 0:
        return "0 B"

    if (system or "IEC").upper() == "SI":
        base, labels = 1000.0, _SI_LABELS
    else:
        base, labels = 1024.0, _IEC_LABELS

    idx = 0
    while value >= base and idx < len(labels) - 1:
        value /= base
        idx += 1
    return f"{value:.2f} {labels[idx]}"


def parse_size(text: str) -> int:
    """Parse sizes such as ``500M``, ``10GB`` or ``2GiB`` into bytes (base 1024).

    A bare number is a byte count. Raises ValueError on anything else.
    """
    match = _SIZE_RE.match(text or "")
    if not match:
        raise ValueError(f"Unrecognised size: {text!r}")
    number, prefix, _ = match.groups()
    return int(float(number) * (1024 ** _EXPONENTS[prefix.lower()]))
