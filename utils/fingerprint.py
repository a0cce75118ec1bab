"""Content fingerprinting for transcript deduplication."""
import hashlib

FINGERPRINT_LENGTH = 32


def fingerprint(content: str) -> str:
    """Return a 32-hex-char digest of the transcript text.

    SHA-256 truncated for storage compactness. This is a dedup key, not a
    credential. Empty input yields the digest of the empty string.
    """
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
