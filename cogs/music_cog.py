from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from jukebox.audio_source import Song, YTDLSource, fetch_title
from jukebox.config import Settings
from jukebox.metrics import (
    idle_disconnects_total,
    playback_errors_total,
    queue_size as metric_queue_size,
    tracks_played_total,
    voice_connections as metric_voice_connections,
)
from jukebox.queue_manager import GuildQueue, QueueManager
from jukebox.url_parser import is_video_url

log = logging.getLogger(__name__)


class MusicCog(commands.Cog):
    def __init__(self, bot: commands.Bot, settings: Settings | None = None) -> None:
        self.bot = bot
        self.settings = settings or Settings()
        self.queues = QueueManager()
        self._reaper_tasks: set[asyncio.Task] = set()

    # ── helpers ──────────────────────────────────────────────────────────

    async def _ensure_voice(
        self, guild: discord.Guild, channel: discord.VoiceChannel
    ) -> discord.VoiceClient:
        """Join the channel, reusing a leftover VoiceClient if the guild still has one."""
        vc: Optional[discord.VoiceClient] = guild.voice_client  # type: ignore[assignment]
        if vc is None:
            vc = await channel.connect(self_deaf=True)
        elif vc.channel != channel:
            await vc.move_to(channel)
        # Counted once per session, whether fresh or reused; _disconnect undoes it
        metric_voice_connections.inc()
        return vc

    async def _disconnect(self, gq: GuildQueue, *, force: bool = False) -> None:
        vc = gq.voice_client
        gq.voice_client = None
        if vc is None:
            return
        try:
            await vc.disconnect(force=force)
        except Exception as exc:
            log.debug("Ignoring error while disconnecting: %s", exc)
        metric_voice_connections.dec()

    def _arm_idle_timer(self, guild_id: int) -> None:
        gq = self.queues.get(guild_id)
        if gq is None:
            return
        gq.cancel_idle_timer()
        gq.idle_timer = self.bot.loop.call_later(
            self.settings.idle_timeout,
            self._spawn_reaper, guild_id,
        )

    def _spawn_reaper(self, guild_id: int) -> None:
        task = asyncio.ensure_future(self._reap_idle(guild_id))
        self._reaper_tasks.add(task)
        task.add_done_callback(self._reaper_tasks.discard)

    async def _reap_idle(self, guild_id: int) -> None:
        gq = self.queues.get(guild_id)
        if gq is None:
            return
        gq.idle_timer = None
        if gq.advancing or gq.is_active():
            return
        log.info(
            "Leaving voice in guild %s after %ss of inactivity",
            guild_id, self.settings.idle_timeout,
        )
        self.queues.remove(guild_id)
        metric_queue_size.labels(guild_id=str(guild_id)).set(0)
        idle_disconnects_total.inc()
        await self._disconnect(gq)

    def _after_play(self, guild_id: int, song: Song, error: Exception | None) -> None:
        # Runs on the audio player thread
        asyncio.run_coroutine_threadsafe(
            self._song_finished(guild_id, song, error), self.bot.loop
        )

    async def _song_finished(
        self, guild_id: int, song: Song, error: Exception | None
    ) -> None:
        gq = self.queues.get(guild_id)
        if error:
            log.error("Error playing %s in guild %s: %s", song.title, guild_id, error)
            playback_errors_total.inc()
            if gq is not None:
                gq.failures += 1
        else:
            log.info("Finished playing: %s", song.title)
            if gq is not None:
                gq.failures = 0
        await self._play_next(guild_id)

    async def _notify_text_channel(self, guild_id: int, msg: str) -> None:
        """Post to the channel the session started from, else the first text channel.

        The starting channel always wins over the "first text channel" rule, which
        only applies once that channel is gone.
        """
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return
        gq = self.queues.get(guild_id)
        channel = None
        if gq is not None and gq.text_channel_id:
            channel = guild.get_channel(gq.text_channel_id)
        if channel is None and guild.text_channels:
            channel = guild.text_channels[0]
        if channel is None:
            return
        try:
            await channel.send(msg)  # type: ignore[union-attr]
        except discord.HTTPException as exc:
            log.warning("Could not post to channel %s: %s", channel.id, exc)

    async def _play_next(self, guild_id: int) -> None:
        gq = self.queues.get(guild_id)
        if gq is None:
            return
        vc = gq.voice_client
        if vc is None or not vc.is_connected():
            return

        # Guard against stale callbacks and overlapping re-entry
        if gq.advancing or gq.is_active():
            return

        limit = self.settings.max_consecutive_failures
        gq.advancing = True
        gq.skip_pending = False
        try:
            while True:
                if limit and gq.failures >= limit:
                    log.warning(
                        "%d consecutive failures in guild %s, dropping %d pending song(s)",
                        gq.failures, guild_id, len(gq.songs),
                    )
                    gq.songs.clear()
                    gq.failures = 0

                song = gq.next_song()
                metric_queue_size.labels(guild_id=str(guild_id)).set(len(gq.songs))
                if song is None:
                    self._arm_idle_timer(guild_id)
                    return

                try:
                    source = await YTDLSource.from_url(
                        song.url, loop=self.bot.loop, volume=self.settings.volume
                    )
                except Exception as exc:
                    log.error("Error loading %s: %s", song.title, exc)
                    playback_errors_total.inc()
                    gq.failures += 1
                    gq.skip_pending = False
                    continue

                if self.queues.get(guild_id) is not gq:
                    source.cleanup()
                    return

                if gq.skip_pending:
                    log.info("Skipped %s before it started", song.title)
                    gq.skip_pending = False
                    source.cleanup()
                    continue

                try:
                    vc.play(source, after=lambda e, s=song: self._after_play(guild_id, s, e))
                except discord.ClientException as exc:
                    log.error("Player refused %s: %s", song.title, exc)
                    source.cleanup()
                    playback_errors_total.inc()
                    gq.failures += 1
                    continue
                break
        finally:
            gq.advancing = False

        gq.cancel_idle_timer()
        tracks_played_total.inc()
        log.info("Now playing %s in guild %s", song.title, guild_id)
        await self._notify_text_channel(guild_id, f"🎵 Now playing: **{song.title}**")

    async def _start_session(
        self, ctx: commands.Context, channel: discord.VoiceChannel, song: Song
    ) -> None:
        guild_id = ctx.guild.id  # type: ignore[union-attr]
        gq = self.queues.create(guild_id, channel, ctx.channel.id)
        gq.add(song)
        try:
            vc = await self._ensure_voice(ctx.guild, channel)  # type: ignore[arg-type]
        except Exception as exc:
            log.error("Failed to join voice in guild %s: %s", guild_id, exc)
            self.queues.remove(guild_id)
            await ctx.reply("❌ Error connecting to the voice channel.")
            return

        gq.voice_client = vc
        log.info("Joined %s in guild %s", channel, guild_id)
        await self._play_next(guild_id)

    # ── commands ─────────────────────────────────────────────────────────

    @commands.command(name="play")
    @commands.guild_only()
    async def play(self, ctx: commands.Context, url: Optional[str] = None) -> None:
        if not is_video_url(url):
            await ctx.reply("🎵 Please provide a valid YouTube link!")
            return

        voice = getattr(ctx.author, "voice", None)
        if voice is None or voice.channel is None:
            await ctx.reply("You need to be in a voice channel to play music!")
            return

        try:
            title = await fetch_title(url, loop=self.bot.loop)  # type: ignore[arg-type]
        except Exception as exc:
            log.warning("Could not fetch info for %s: %s", url, exc)
            await ctx.reply("❌ Could not load that video.")
            return
        song = Song(url=url, title=title)  # type: ignore[arg-type]

        guild_id = ctx.guild.id  # type: ignore[union-attr]
        gq = self.queues.get(guild_id)
        if gq is None:
            await self._start_session(ctx, voice.channel, song)
            return

        gq.add(song)
        metric_queue_size.labels(guild_id=str(guild_id)).set(len(gq.songs))
        await ctx.reply(f"🎶 **{song.title}** has been added to the queue!")

        # A connected session waiting on the idle timer resumes right away
        if gq.voice_client is not None and not gq.advancing and not gq.is_active():
            gq.cancel_idle_timer()
            await self._play_next(guild_id)

    @commands.command(name="skip")
    @commands.guild_only()
    async def skip(self, ctx: commands.Context) -> None:
        gq = self.queues.get(ctx.guild.id)  # type: ignore[union-attr]
        if gq is None or not gq.songs:
            await ctx.reply("⏭️ There are no songs to skip!")
            return

        title = gq.current.title if gq.current else "current song"
        await ctx.reply(f"⏭️ Skipping **{title}**")
        if gq.advancing:
            # Nothing is in the player yet; _play_next drops the song once resolved
            gq.skip_pending = True
        elif gq.voice_client is not None:
            gq.voice_client.stop()  # triggers _after_play → _play_next

    # ── listeners ────────────────────────────────────────────────────────

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Give a dropped voice connection a short grace period, then tear down."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        if before.channel is None or after.channel is not None:
            return

        guild_id = member.guild.id
        gq = self.queues.get(guild_id)
        if gq is None:
            return

        def _rejoined(m: discord.Member, b: discord.VoiceState, a: discord.VoiceState) -> bool:
            return m.id == member.id and m.guild.id == guild_id and a.channel is not None

        try:
            await self.bot.wait_for(
                "voice_state_update", check=_rejoined,
                timeout=self.settings.reconnect_grace,
            )
        except asyncio.TimeoutError:
            if self.queues.get(guild_id) is not gq:
                return
            log.warning(
                "Voice connection in guild %s did not recover within %ss, tearing down",
                guild_id, self.settings.reconnect_grace,
            )
            self.queues.remove(guild_id)
            metric_queue_size.labels(guild_id=str(guild_id)).set(0)
            await self._disconnect(gq, force=True)
            return

        log.info("Voice connection in guild %s recovered", guild_id)
        if self.queues.get(guild_id) is gq and not gq.is_active():
            await self._play_next(guild_id)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(MusicCog(bot, getattr(bot, "settings", None)))
