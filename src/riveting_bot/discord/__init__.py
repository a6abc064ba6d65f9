"""discord.py adapter: gateway client, REST calls and voice transport."""
