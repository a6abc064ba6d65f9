"""discord.py implementation of the audio transport.

Audio is decoded by FFmpeg through ``discord.FFmpegPCMAudio``. discord.py
invokes the ``after`` callback from its audio player thread.
"""

from __future__ import annotations

import discord

from riveting_bot.logging import get_logger
from riveting_bot.voice.models import Track, VoiceConnectionError
from riveting_bot.voice.transport import TrackFinished

log = get_logger("riveting_bot.discord.voice")

FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5"
FFMPEG_OPTIONS = "-vn"


class DiscordVoiceConnection:
    """Wraps a ``discord.VoiceClient``."""

    def __init__(self, voice_client: discord.VoiceClient) -> None:
        self._vc = voice_client

    @property
    def channel_id(self) -> int:
        return self._vc.channel.id

    def is_connected(self) -> bool:
        return self._vc.is_connected()

    async def play(self, track: Track, after: TrackFinished) -> None:
        if not self._vc.is_connected():
            raise VoiceConnectionError()
        if self._vc.is_playing() or self._vc.is_paused():
            self._vc.stop()
        source = discord.FFmpegPCMAudio(
            track.source,
            before_options=FFMPEG_BEFORE_OPTIONS,
            options=FFMPEG_OPTIONS,
        )
        self._vc.play(discord.PCMVolumeTransformer(source), after=after)

    def pause(self) -> None:
        self._vc.pause()

    def resume(self) -> None:
        self._vc.resume()

    def stop(self) -> None:
        self._vc.stop()

    async def disconnect(self) -> None:
        await self._vc.disconnect(force=True)


class DiscordVoiceConnector:
    """Connects to voice channels through a logged-in ``discord.Client``."""

    def __init__(self, client: discord.Client, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    async def connect(self, guild_id: int, channel_id: int) -> DiscordVoiceConnection:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            raise VoiceConnectionError("I cannot see that server.")
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, discord.VoiceChannel | discord.StageChannel):
            raise VoiceConnectionError("That is not a voice channel.")

        existing = guild.voice_client
        if isinstance(existing, discord.VoiceClient) and existing.is_connected():
            if existing.channel.id != channel_id:
                await existing.move_to(channel)
            return DiscordVoiceConnection(existing)

        try:
            voice_client = await channel.connect(timeout=self._timeout, reconnect=False)
        except (discord.ClientException, discord.HTTPException, TimeoutError) as e:
            raise VoiceConnectionError(f"Could not connect to voice: {e}") from e
        log.debug("discord_voice_connected", guild_id=guild_id, channel_id=channel_id)
        return DiscordVoiceConnection(voice_client)
