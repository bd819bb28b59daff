import logging

import discord
from discord.ext import commands

from jukebox.config import Settings

log = logging.getLogger("jukebox")


class Jukebox(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.voice_states = True
        super().__init__(
            command_prefix=settings.command_prefix,
            intents=intents,
            help_command=None,
        )
        self.settings = settings

    async def setup_hook(self) -> None:
        await self.load_extension("cogs.music_cog")

        if self.settings.metrics_port:
            try:
                from jukebox.metrics import start_metrics_server
                start_metrics_server(self.settings.metrics_port)
                log.info("Prometheus metrics server started on :%s", self.settings.metrics_port)
            except OSError as exc:
                log.warning("Failed to start metrics server: %s", exc)

        if self.settings.web_port:
            try:
                from web.app import start_web_server
                await start_web_server(self, self.settings.web_port)
                log.info("Status server started on :%s", self.settings.web_port)
            except OSError as exc:
                log.warning("Failed to start status server: %s", exc)

    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s) in %d guild(s)",
                 self.user, self.user.id, len(self.guilds))

    async def on_command_error(
        self, ctx: commands.Context, error: commands.CommandError
    ) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.NoPrivateMessage):
            await ctx.reply("Music commands only work inside a server.")
            return
        log.error("Command %s failed: %s", ctx.command, error, exc_info=error)


def main() -> None:
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not settings.discord_token:
        raise SystemExit("DISCORD_TOKEN not set in .env")

    bot = Jukebox(settings)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
