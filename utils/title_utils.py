"""Title derivation for transcripts submitted without one."""
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from models.db_models import TranscriptOrigin

MAX_PASTE_TITLE_LENGTH = 120

_SENTENCE_END = re.compile(r"[.!?\n]")


def _title_from_paste(content: str) -> str:
    text = content.strip()
    match = _SENTENCE_END.search(text)
    first = text[:match.start()].strip() if match else text
    if not first:
        first = text

    if len(first) > MAX_PASTE_TITLE_LENGTH:
        return first[:MAX_PASTE_TITLE_LENGTH - 3].rstrip() + "..."
    return first


def _title_from_link(link_url: str) -> Optional[str]:
    parsed = urlparse(link_url)
    domain = parsed.netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    if not domain:
        return None

    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return domain

    slug = re.sub(r"\.[a-z0-9]+$", "", segments[-1], flags=re.IGNORECASE)
    words = [w for w in re.split(r"[-_+]+", slug) if w]
    if not words:
        return domain
    return f"{domain} — {' '.join(w.capitalize() for w in words)}"


def derive_title(
    title: Optional[str],
    content: str,
    origin: TranscriptOrigin,
    file_name: Optional[str] = None,
    link_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Return the caller's title, or derive one from the source.

    file upload -> file name; paste -> first sentence; link -> domain and
    slug; anything else -> timestamped fallback.
    """
    if title and title.strip():
        return title.strip()

    if origin == TranscriptOrigin.chat_upload and file_name:
        return file_name

    if origin == TranscriptOrigin.chat_paste and content.strip():
        return _title_from_paste(content)

    if link_url:
        derived = _title_from_link(link_url)
        if derived:
            return derived

    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return f"Transcript — {stamp}"
