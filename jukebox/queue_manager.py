from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING

from .audio_source import Song

if TYPE_CHECKING:
    import discord

log = logging.getLogger(__name__)


class JukeboxError(Exception):
    pass


class QueueExistsError(JukeboxError):
    """Raised when a second queue is created for a guild that already has one."""

    def __init__(self, guild_id: int) -> None:
        super().__init__(f"Guild {guild_id} already has a queue")
        self.guild_id = guild_id


class GuildQueue:
    """Per-guild playback state."""

    def __init__(
        self,
        voice_channel: discord.abc.Connectable | None = None,
        text_channel_id: int | None = None,
    ) -> None:
        self.voice_channel = voice_channel
        # discord.py's VoiceClient is both the connection and the audio player
        self.voice_client: discord.VoiceClient | None = None
        self.songs: deque[Song] = deque()
        self.current: Song | None = None
        self.idle_timer: asyncio.TimerHandle | None = None
        self.text_channel_id = text_channel_id
        self.failures: int = 0
        # Set while the driver is resolving the next song's stream
        self.advancing: bool = False
        # A skip that arrived before the resolving song reached the player
        self.skip_pending: bool = False

    def add(self, song: Song) -> int:
        """Append a song and return its position (1-indexed)."""
        self.songs.append(song)
        return len(self.songs)

    def next_song(self) -> Song | None:
        """Pop the next pending song in FIFO order. Returns None when empty."""
        if not self.songs:
            self.current = None
            return None
        self.current = self.songs.popleft()
        return self.current

    def cancel_idle_timer(self) -> None:
        if self.idle_timer is not None:
            self.idle_timer.cancel()
            self.idle_timer = None

    def is_active(self) -> bool:
        """True while the player holds a resource (playing or paused)."""
        vc = self.voice_client
        return vc is not None and (vc.is_playing() or vc.is_paused())


class QueueManager:
    """Holds per-guild queues. A guild has at most one GuildQueue at a time."""

    def __init__(self) -> None:
        self._guilds: dict[int, GuildQueue] = {}

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._guilds

    def __len__(self) -> int:
        return len(self._guilds)

    def guild_ids(self) -> list[int]:
        return list(self._guilds)

    def get(self, guild_id: int) -> GuildQueue | None:
        return self._guilds.get(guild_id)

    def create(
        self,
        guild_id: int,
        voice_channel: discord.abc.Connectable | None = None,
        text_channel_id: int | None = None,
    ) -> GuildQueue:
        if guild_id in self._guilds:
            raise QueueExistsError(guild_id)
        gq = GuildQueue(voice_channel, text_channel_id)
        self._guilds[guild_id] = gq
        log.debug("Created queue for guild %s", guild_id)
        return gq

    def remove(self, guild_id: int) -> GuildQueue | None:
        gq = self._guilds.pop(guild_id, None)
        if gq is not None:
            gq.cancel_idle_timer()
            log.debug("Removed queue for guild %s", guild_id)
        return gq
