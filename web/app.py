"""Embedded status API for Jukebox.

Shares the bot process, with direct access to MusicCog state.
Started only when the WEB_PORT env var is set.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiohttp.web as web

if TYPE_CHECKING:
    from discord.ext import commands

log = logging.getLogger(__name__)

routes = web.RouteTableDef()


def _get_cog(request: web.Request):
    bot: commands.Bot = request.app["bot"]
    cog = bot.get_cog("MusicCog")
    if cog is None:
        raise web.HTTPServiceUnavailable(text="MusicCog not loaded")
    return cog


def _get_queue(request: web.Request):
    cog = _get_cog(request)
    try:
        guild_id = int(request.match_info["guild_id"])
    except ValueError:
        raise web.HTTPBadRequest(text="Invalid guild id") from None
    gq = cog.queues.get(guild_id)
    if gq is None:
        raise web.HTTPNotFound(text="No active session for this guild")
    return gq


# ── Health ───────────────────────────────────────────────────────────────

@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    bot = request.app["bot"]
    cog = bot.get_cog("MusicCog")
    return web.json_response({
        "status": "ok",
        "guilds": len(bot.guilds),
        "sessions": len(cog.queues) if cog is not None else 0,
    })


# ── Queue ────────────────────────────────────────────────────────────────

@routes.get("/api/guilds/{guild_id}/queue")
async def get_queue(request: web.Request) -> web.Response:
    gq = _get_queue(request)

    def _song(s):
        return {"title": s.title, "url": s.url}

    data = {
        "current": _song(gq.current) if gq.current and gq.is_active() else None,
        "queue": [_song(s) for s in gq.songs],
        "idle": gq.idle_timer is not None,
    }
    return web.json_response(data)


@routes.post("/api/guilds/{guild_id}/skip")
async def skip(request: web.Request) -> web.Response:
    gq = _get_queue(request)
    if not gq.songs or gq.voice_client is None:
        raise web.HTTPBadRequest(text="There are no songs to skip")
    title = gq.current.title if gq.current else None
    if gq.advancing:
        gq.skip_pending = True
    else:
        gq.voice_client.stop()
    return web.json_response({"status": "skipped", "title": title})


# ── Server lifecycle ─────────────────────────────────────────────────────

def create_app(bot: commands.Bot) -> web.Application:
    app = web.Application()
    app["bot"] = bot
    app.router.add_routes(routes)
    return app


async def start_web_server(bot: commands.Bot, port: int = 8080) -> web.AppRunner:
    runner = web.AppRunner(create_app(bot))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner
