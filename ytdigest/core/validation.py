"""URL-shape validation and dedup-key normalization for YouTube links."""

from __future__ import annotations

import re

_YOUTUBE_URL = re.compile(
    r"^(?:https?://)?(?:www\.|m\.)?(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/shorts/)"
    r"(?P<video_id>[A-Za-z0-9_-]{11})(?![A-Za-z0-9_-])"
)


def extract_video_id(text: str) -> str | None:
    match = _YOUTUBE_URL.match(text.strip())
    return match.group("video_id") if match else None


def is_valid_youtube_url(text: str) -> bool:
    return extract_video_id(text) is not None


def normalize_video_url(text: str) -> str:
    """Return the canonical watch URL used as dedup key.

    ``youtu.be/ID``, ``m.youtube.com/watch?v=ID&t=10`` and friends all map to the
    same key so they coalesce into one unit of work.

    Raises:
        ValueError: If ``text`` is not a YouTube video URL.
    """
    video_id = extract_video_id(text)
    if video_id is None:
        raise ValueError(f"not a YouTube video URL: {text!r}")
    return f"https://www.youtube.com/watch?v={video_id}"
