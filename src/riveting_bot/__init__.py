"""Riveting Bot - a Discord bot with a permission-gated command engine.

This package provides:
- Event router driving command dispatch and interactive standby waits
- Permission tiers (user, admin, owner) resolved per event
- Per-guild voice sessions with an audio queue
- Batched moderation deletes
- A discord.py adapter for the gateway, REST and voice transports
"""

__version__ = "0.4.0"
__repository__ = "https://github.com/Samzyre/riveting-bot"
