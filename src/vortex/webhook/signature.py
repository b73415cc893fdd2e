"""GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body and
sends the hex digest as ``X-Hub-Signature-256: sha256=<hex>``. The body
must be verified before it is parsed: re-serialized JSON does not
reproduce the signed bytes.
"""

import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: bytes) -> str:
    """Return the ``sha256=<hex>`` header value GitHub would send."""
    digest = hmac.new(secret, raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Union[bytes, str, None],
) -> bool:
    """Check a webhook signature in constant time.

    Args:
        raw_body: Request body exactly as received.
        signature_header: Value of the X-Hub-Signature-256 header.
        secret: Shared webhook secret.

    Returns:
        True only if the header carries the expected digest. Missing or
        malformed input yields False; this function never raises.
    """
    if not isinstance(signature_header, str) or not secret:
        return False
    if not isinstance(raw_body, (bytes, bytearray)):
        return False
    signature_header = signature_header.strip()
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    if isinstance(secret, str):
        secret = secret.encode("utf-8")

    expected = compute_signature(bytes(raw_body), secret)
    try:
        return hmac.compare_digest(
            expected.encode("ascii"),
            signature_header.encode("ascii"),
        )
    except UnicodeEncodeError:
        return False
