import re

_HOST = r"\s*https?://(?:www\.|m\.|music\.|gaming\.)?"
# Longer ids are truncated to their first 11 characters
_ID = r"(?P<id>[A-Za-z0-9_-]{11})"

_VIDEO_RES = (
    re.compile(_HOST + r"youtube\.com/watch\?(?:\S*&)?v=" + _ID, re.IGNORECASE),
    re.compile(_HOST + r"youtube\.com/(?:shorts|embed|live|v)/" + _ID, re.IGNORECASE),
    re.compile(r"\s*https?://youtu\.be/" + _ID, re.IGNORECASE),
)


def video_id(url: str | None) -> str | None:
    """Return the 11-character video id of a YouTube video URL, or None.

    A scheme is required and hosts match case-insensitively.
    """
    if not url:
        return None
    for pattern in _VIDEO_RES:
        m = pattern.match(url)
        if m:
            return m.group("id")
    return None


def is_video_url(url: str | None) -> bool:
    return video_id(url) is not None
