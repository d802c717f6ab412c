"""
Utility functions for the GreenTap storefront backend
"""
import hashlib
import hmac
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple, Union

from django.utils import timezone

logger = logging.getLogger(__name__)

BytesOrStr = Union[bytes, str]


def _to_bytes(value: BytesOrStr) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def hmac_sha256_hex(secret: BytesOrStr, message: BytesOrStr) -> str:
    """
    Hex digest of HMAC-SHA256 over message keyed by secret.
    """
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: BytesOrStr, message: BytesOrStr, signature: Optional[str]) -> bool:
    """
    Timing-safe comparison of a supplied hex signature against the expected one.
    An empty secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    expected = hmac_sha256_hex(secret, message)
    return hmac.compare_digest(expected, str(signature))


def generate_reference(prefix: str, length: int = 10) -> str:
    """
    Human-facing reference like ORD-20250301-7F3A9C21E4.
    """
    stamp = timezone.now().strftime("%Y%m%d")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:length].upper()}"


def to_minor_units(amount: Union[Decimal, int, float, str]) -> int:
    """
    Convert a rupee amount to paise, rounding half up.
    """
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def from_minor_units(amount: Optional[Union[int, str]]) -> Decimal:
    """
    Convert paise to a rupee Decimal.
    """
    if amount in (None, ""):
        return Decimal("0.00")
    return (Decimal(str(amount)) / Decimal(100)).quantize(Decimal("0.01"))


def parse_pagination(params: Dict[str, Any], default_limit: int = 20, max_limit: int = 100) -> Tuple[int, int]:
    """
    Read limit/offset query params, clamping to sane bounds.
    """
    try:
        limit = int(params.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    try:
        offset = int(params.get("offset", 0))
    except (TypeError, ValueError):
        offset = 0
    return max(1, min(limit, max_limit)), max(0, offset)
