"""Platform limits and shared constants."""

# Discord message content limit.
MAX_MESSAGE_LENGTH = 2000

# Bulk delete endpoint accepts between 2 and 100 message ids per call.
BULK_DELETE_MIN_BATCH = 2
BULK_DELETE_MAX_BATCH = 100

# Discord snowflake epoch (2015-01-01T00:00:00Z) in milliseconds.
DISCORD_EPOCH_MS = 1420070400000

# Quote characters accepted around text command arguments.
DELIMITERS = ('"', "'", "`")

CONFIRM_EMOJI = "✅"
CANCEL_EMOJI = "❌"
