import re
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple
from urllib.parse import urlparse

CONTENT_KEY_SEPARATOR = ":"

_YOUTUBE_VIDEO_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/)([^&\n?#/]+)")
_YOUTUBE_PLAYLIST_RE = re.compile(r"[?&]list=([^&\n?#]+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def split_content_key(content_key: str) -> Tuple[str, str]:
    """
    Splits "youtube:abc123" into ("youtube", "abc123").
    Raises ValueError when the key has no prefix or an empty identifier.
    """
    prefix, sep, ident = (content_key or "").partition(CONTENT_KEY_SEPARATOR)
    if not sep or not prefix or not ident:
        raise ValueError(f"Malformed content key: {content_key!r}")
    return prefix.lower(), ident


def build_content_key(prefix: str, ident: str) -> str:
    return f"{prefix.lower()}{CONTENT_KEY_SEPARATOR}{ident}"


def extract_youtube_video_id(url: str) -> Optional[str]:
    match = _YOUTUBE_VIDEO_RE.search(url or "")
    return match.group(1) if match else None


def extract_youtube_playlist_id(url: str) -> Optional[str]:
    match = _YOUTUBE_PLAYLIST_RE.search(url or "")
    return match.group(1) if match else None


def domain_from_url(url: str) -> Optional[str]:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def iso8601_duration_to_seconds(iso: str) -> int:
    # PT#H#M#S, as returned by the YouTube Data API
    match = re.match(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$", iso or "")
    if not match:
        return 0
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return int(timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds).total_seconds())
