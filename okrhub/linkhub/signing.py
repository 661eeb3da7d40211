import hashlib
import hmac

from okrhub.external_id import OKRHUB_VERSION

HEADER_VERSION = "X-Version"
HEADER_KEY_PREFIX = "X-Key-Prefix"
HEADER_SIGNATURE = "X-Signature"


def sign_payload(body: str, signing_secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of the exact request body."""
    return hmac.new(
        signing_secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def build_headers(body: str, api_key_prefix: str, signing_secret: str) -> dict:
    """
    Headers for an ingest request. The signature covers ``body`` byte for
    byte, so the same string must be sent unchanged.
    """
    return {
        "Content-Type": "application/json",
        HEADER_VERSION: OKRHUB_VERSION,
        HEADER_KEY_PREFIX: api_key_prefix,
        HEADER_SIGNATURE: sign_payload(body, signing_secret),
    }


def verify_signature(body: str, signing_secret: str, signature: str) -> bool:
    """Check a received signature in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, signing_secret), signature.lower())
