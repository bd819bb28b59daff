import asyncio
from types import SimpleNamespace

import discord
import pytest

from cogs import music_cog
from cogs.music_cog import MusicCog
from jukebox.config import Settings


def yt(n: int) -> str:
    """A distinct, well-formed video URL per number."""
    return f"https://www.youtube.com/watch?v={n:011d}"


async def settle(rounds: int = 10) -> None:
    """Let callbacks scheduled with run_coroutine_threadsafe run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSource:
    def __init__(self, url: str, title: str):
        self.url = url
        self.title = title
        self.cleaned_up = False

    def cleanup(self):
        self.cleaned_up = True


class FakeVoiceClient:
    def __init__(self, guild, channel):
        self.guild = guild
        self.channel = channel
        self.connected = True
        self.source = None
        self._after = None
        self.played: list[str] = []
        self.disconnect_calls: list[bool] = []

    def is_connected(self):
        return self.connected

    def is_playing(self):
        return self.source is not None

    def is_paused(self):
        return False

    def play(self, source, *, after=None):
        if self.source is not None:
            raise discord.ClientException("Already playing audio.")
        self.source = source
        self._after = after
        self.played.append(source.title)

    def stop(self):
        self.finish()

    def finish(self, error=None):
        """Simulate the player reaching the end of the current resource."""
        if self.source is None:
            return
        after, self.source, self._after = self._after, None, None
        if after is not None:
            after(error)

    async def move_to(self, channel):
        self.channel = channel

    async def disconnect(self, *, force=False):
        self.disconnect_calls.append(force)
        self.connected = False
        self.guild.voice_client = None
        self.stop()


class FakeVoiceChannel:
    def __init__(self, guild, channel_id: int = 500):
        self.guild = guild
        self.id = channel_id
        self.fail = False
        self.connect_count = 0

    async def connect(self, *, self_deaf=False):
        self.connect_count += 1
        if self.fail:
            raise asyncio.TimeoutError()
        vc = FakeVoiceClient(self.guild, self)
        self.guild.voice_client = vc
        return vc

    def __str__(self):
        return f"voice-{self.id}"


class FakeTextChannel:
    def __init__(self, channel_id: int):
        self.id = channel_id
        self.sent: list[str] = []
        self.error: Exception | None = None

    async def send(self, msg):
        if self.error is not None:
            raise self.error
        self.sent.append(msg)


class FakeGuild:
    def __init__(self, guild_id: int):
        self.id = guild_id
        self.voice_client = None
        self.text_channels = [FakeTextChannel(guild_id * 10 + 1), FakeTextChannel(guild_id * 10 + 2)]
        self.voice_channel = FakeVoiceChannel(self, guild_id * 10 + 9)

    def get_channel(self, channel_id):
        for ch in self.text_channels:
            if ch.id == channel_id:
                return ch
        return None


class FakeContext:
    def __init__(self, guild, author, channel):
        self.guild = guild
        self.author = author
        self.channel = channel
        self.replies: list[str] = []

    async def reply(self, msg):
        self.replies.append(msg)


class FakeBot:
    def __init__(self):
        self.user = SimpleNamespace(id=999)
        self._guilds: dict[int, FakeGuild] = {}
        self.cog = None
        self.wait_for_result = None

    @property
    def loop(self):
        return asyncio.get_running_loop()

    @property
    def guilds(self):
        return list(self._guilds.values())

    def add_guild(self, guild):
        self._guilds[guild.id] = guild

    def get_guild(self, guild_id):
        return self._guilds.get(guild_id)

    def get_cog(self, name):
        return self.cog if name == "MusicCog" else None

    async def wait_for(self, event, *, check=None, timeout=None):
        if isinstance(self.wait_for_result, BaseException):
            raise self.wait_for_result
        return self.wait_for_result


class FakeExtractor:
    """Stands in for yt-dlp: titles by URL, and URLs whose stream fails."""

    def __init__(self):
        self.failing: set[str] = set()
        self.title_failing: set[str] = set()
        self.attempts: list[str] = []
        # url -> Event; from_url waits on it before returning
        self.gates: dict[str, asyncio.Event] = {}
        self.sources: list[FakeSource] = []

    @staticmethod
    def title_for(url: str) -> str:
        return f"Song {int(url.rsplit('=', 1)[1])}"

    async def fetch_title(self, url, *, loop):
        if url in self.title_failing:
            raise RuntimeError("Video unavailable")
        return self.title_for(url)

    async def from_url(self, url, *, loop, volume=0.5):
        self.attempts.append(url)
        if url in self.gates:
            await self.gates[url].wait()
        if url in self.failing:
            raise RuntimeError("Sign in to confirm your age")
        source = FakeSource(url, self.title_for(url))
        self.sources.append(source)
        return source


class Env:
    def __init__(self, cog, bot, extractor):
        self.cog = cog
        self.bot = bot
        self.extractor = extractor
        self.guild = FakeGuild(1)
        bot.add_guild(self.guild)

    def member(self, guild=None, in_voice=True):
        guild = guild or self.guild
        voice = SimpleNamespace(channel=guild.voice_channel) if in_voice else None
        return SimpleNamespace(id=42, voice=voice, guild=guild, bot=False)

    def ctx(self, guild=None, author=None, channel=None):
        guild = guild or self.guild
        return FakeContext(
            guild,
            author or self.member(guild),
            channel or guild.text_channels[1],
        )

    async def play(self, url, *, ctx=None):
        ctx = ctx or self.ctx()
        await self.cog.play.callback(self.cog, ctx, url)
        return ctx

    async def skip(self, *, ctx=None):
        ctx = ctx or self.ctx()
        await self.cog.skip.callback(self.cog, ctx)
        return ctx


@pytest.fixture
def settings():
    return Settings(
        discord_token="token",
        idle_timeout=0.05,
        reconnect_grace=0.05,
        max_consecutive_failures=0,
    )


@pytest.fixture
def extractor(monkeypatch):
    ext = FakeExtractor()
    monkeypatch.setattr(music_cog, "fetch_title", ext.fetch_title)
    monkeypatch.setattr(music_cog.YTDLSource, "from_url", ext.from_url)
    return ext


@pytest.fixture
def env(settings, extractor):
    bot = FakeBot()
    cog = MusicCog(bot, settings)
    bot.cog = cog
    return Env(cog, bot, extractor)
