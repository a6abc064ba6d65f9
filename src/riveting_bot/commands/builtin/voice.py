"""Voice playback commands."""

from __future__ import annotations

from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.registry import Command, Option, OptionKind
from riveting_bot.config import Feature
from riveting_bot.errors import BotError
from riveting_bot.voice import Track, VoiceManager, VoiceSession
from riveting_bot.voice.models import PlaybackState


def _manager(ctx: CommandContext) -> VoiceManager:
    if ctx.services.voice is None:
        raise BotError("Voice is not available on this bot.")
    return ctx.services.voice


async def _join(ctx: CommandContext, channel_id: int | None) -> VoiceSession:
    guild_id = ctx.require_guild()
    if channel_id is None:
        channel_id = ctx.services.member_voice.get((guild_id, ctx.actor.id))
    if channel_id is None:
        raise BotError("Join a voice channel first, or tell me which one to join.")

    api = ctx.api
    text_channel = ctx.channel_id

    async def report(message: str) -> None:
        await api.send_message(text_channel, message)

    return await _manager(ctx).join(guild_id, channel_id, reporter=report)


async def join(ctx: CommandContext) -> Response:
    session = await _join(ctx, ctx.arg("channel"))
    return Response.message(f"Joined <#{session.channel_id}>.")


async def leave(ctx: CommandContext) -> Response:
    left = await _manager(ctx).leave(ctx.require_guild())
    return Response.message("Bye!" if left else "I am not in a voice channel.")


async def play(ctx: CommandContext) -> Response:
    guild_id = ctx.require_guild()
    manager = _manager(ctx)
    if manager.get(guild_id) is None:
        await _join(ctx, None)

    source = ctx.arg("source")
    position = await manager.enqueue(guild_id, Track(source, requested_by=ctx.actor.id))
    if position == 0:
        return Response.message(f"Now playing `{source}`.")
    return Response.message(f"Queued `{source}` at position {position}.")


async def skip(ctx: CommandContext) -> Response:
    skipped = await _manager(ctx).skip(ctx.require_guild())
    return Response.message(f"Skipped `{skipped.display}`.")


async def pause(ctx: CommandContext) -> Response:
    await _manager(ctx).pause(ctx.require_guild())
    return Response.message("Paused.")


async def resume(ctx: CommandContext) -> Response:
    await _manager(ctx).resume(ctx.require_guild())
    return Response.message("Resumed.")


async def queue(ctx: CommandContext) -> Response:
    snapshot = await _manager(ctx).queue(ctx.require_guild())
    if snapshot.current is None and not snapshot.upcoming:
        return Response.message("The queue is empty.")

    lines = []
    if snapshot.current is not None:
        marker = "Paused" if snapshot.state is PlaybackState.PAUSED else "Now playing"
        lines.append(f"{marker}: `{snapshot.current.display}`")
    for index, track in enumerate(snapshot.upcoming, start=1):
        lines.append(f"{index}. `{track.display}`")
    return Response.message("\n".join(lines))


def commands() -> list[Command]:
    return [
        Command(
            "voice",
            "Voice channel playback.",
            required_features=frozenset({Feature.VOICE}),
            dm_allowed=False,
            subcommands=(
                Command(
                    "join",
                    "Join a voice channel.",
                    join,
                    options=(
                        Option(
                            "channel",
                            "Channel to join, defaults to yours.",
                            OptionKind.CHANNEL,
                            required=False,
                        ),
                    ),
                ),
                Command("leave", "Leave the voice channel.", leave),
                Command(
                    "play",
                    "Play or queue audio.",
                    play,
                    options=(Option("source", "Audio URL to play.", greedy=True),),
                ),
                Command("skip", "Skip the current track.", skip),
                Command("pause", "Pause playback.", pause),
                Command("resume", "Resume playback.", resume),
                Command("queue", "Show the queue.", queue),
            ),
        )
    ]
