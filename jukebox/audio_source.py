from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import discord
import yt_dlp

log = logging.getLogger(__name__)

YTDL_OPTIONS = {
    "format": "bestaudio/best",
    "noplaylist": True,
    "nocheckcertificate": True,
    "ignoreerrors": False,
    "quiet": True,
    "no_warnings": True,
    "source_address": "0.0.0.0",
    "http_chunk_size": 256 * 1024,
}

FFMPEG_OPTIONS = {
    "before_options": (
        "-reconnect 1 -reconnect_streamed 1 -reconnect_on_network_error 1"
        " -reconnect_delay_max 5"
    ),
    "options": f"-vn -ar 48000 -bufsize {1 << 26}",
}


@dataclass(frozen=True)
class Song:
    """A queued video. Resolved to a playable source just-in-time."""

    url: str
    title: str


def _extract(url: str, **overrides) -> dict:
    ytdl = yt_dlp.YoutubeDL({**YTDL_OPTIONS, **overrides})
    data = ytdl.extract_info(url, download=False)
    if data is None:
        raise yt_dlp.utils.DownloadError(f"No data returned for {url}")
    if "entries" in data:
        entries = [e for e in data["entries"] or [] if e]
        if not entries:
            raise yt_dlp.utils.DownloadError(f"No playable entries for {url}")
        data = entries[0]
    return data


async def fetch_title(url: str, *, loop: asyncio.AbstractEventLoop) -> str:
    """Fetch the display title of a video without resolving its stream."""
    data = await loop.run_in_executor(
        None, lambda: _extract(url, skip_download=True)
    )
    return data.get("title") or "Unknown"


class YTDLSource(discord.PCMVolumeTransformer):
    """Wraps FFmpegPCMAudio with volume control and metadata."""

    def __init__(
        self,
        source: discord.AudioSource,
        *,
        data: dict,
        volume: float = 0.5,
    ) -> None:
        super().__init__(source, volume)
        self.title: str = data.get("title", "Unknown")
        self.url: str = data.get("webpage_url", "")
        self.stream_url: str = data.get("url", "")

    @classmethod
    async def from_url(
        cls,
        url: str,
        *,
        loop: asyncio.AbstractEventLoop,
        volume: float = 0.5,
    ) -> YTDLSource:
        """Create a playable audio-only source from a video URL."""
        data = await loop.run_in_executor(None, lambda: _extract(url))
        log.debug("Resolved stream for %s", data.get("title", url))
        source = discord.FFmpegPCMAudio(
            data["url"],
            before_options=FFMPEG_OPTIONS["before_options"],
            options=FFMPEG_OPTIONS["options"],
        )
        return cls(source, data=data, volume=volume)
