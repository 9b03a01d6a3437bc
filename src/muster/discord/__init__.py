"""Discord bot integration for Muster.

The bot runs in-process with FastAPI, sharing the same event loop. It owns
the slash commands, the approve/deny controls for equipment and
certification requests, event announcements with RSVP buttons, and the
Discord side of the internal HTTP API.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""
