"""Amount formatting, status parsing, and signature helpers for the Chapa API.

Chapa takes monetary amounts in the major currency unit (``"1000.00"`` ETB
rather than santim), so no smallest-unit conversion happens anywhere in this
app.  This module also provides a helper to safely obfuscate API keys for log
output and to check the optional HMAC signature on webhook deliveries.
"""

import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal

_OBFUSCATE_VISIBLE_CHARS = 4

PAID_STATUSES: frozenset[str] = frozenset({"success", "paid"})


def format_amount_for_api(amount: Decimal) -> str:
    """Format a Decimal amount the way Chapa expects it.

    Args:
        amount: The monetary amount in major currency units.

    Returns:
        The amount rounded to two places as a plain string, e.g. ``"1000.00"``.
    """
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def is_success(value: object) -> bool:
    """Return True when a Chapa status field reads ``success`` (case-insensitive)."""
    return isinstance(value, str) and value.strip().lower() == "success"


def is_paid_status(value: object) -> bool:
    """Return True when a transaction status means the payment went through."""
    return isinstance(value, str) and value.strip().lower() in PAID_STATUSES


def compute_signature(secret: str, payload: bytes) -> str:
    """Return the hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def signature_matches(secret: str, payload: bytes, signature: str) -> bool:
    """Check a webhook signature header in constant time.

    Args:
        secret: The webhook secret configured in the Chapa dashboard.
        payload: The raw request body.
        signature: The hex digest sent by Chapa.

    Returns:
        ``True`` if the signature is valid for this payload.
    """
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, payload), signature.strip().lower())


def obfuscate_key(key: str) -> str:
    """Obfuscate an API key so it can be safely written to logs.

    Returns the last four characters of the key prefixed with ``"****"``.  If the key is
    shorter than four characters the entire value is masked and only ``"****"`` is
    returned.

    Args:
        key: The secret key to obfuscate.

    Returns:
        A partially masked string safe for log output.
    """
    if len(key) < _OBFUSCATE_VISIBLE_CHARS:
        return "****"
    return "****" + key[-_OBFUSCATE_VISIBLE_CHARS:]
