"""
Network address helpers for route management.
"""

import ipaddress

from core.exceptions import ValidationError
from core.types import CIDR

def normalize_cidr(cidr: str) -> CIDR:
    """
    Parse a CIDR and return it in canonical (masked) form.

    Host bits are cleared, so ``10.0.0.7/24`` becomes ``10.0.0.0/24``.
    A bare address is treated as a single-host network.
    """
    if not isinstance(cidr, str) or not cidr.strip():
        raise ValidationError("network", str(cidr), "CIDR is required")
    try:
        network = ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError as e:
        raise ValidationError("network", cidr, f"invalid CIDR: {e}")
    return str(network)

def validate_asn(asn) -> int:
    """Validate an autonomous system number."""
    try:
        value = int(asn)
    except (TypeError, ValueError):
        raise ValidationError("asn", str(asn), "ASN must be an integer")
    if value <= 0 or value > 4294967295:
        raise ValidationError("asn", str(asn), "ASN out of range")
    return value
