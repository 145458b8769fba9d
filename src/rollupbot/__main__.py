# __main__.py
import asyncio
import logging
import os
import time

import discord
from discord.ext import commands
from dotenv import load_dotenv

from rollupbot.db import init_db

load_dotenv()

token = os.getenv("DISCORD_TOKEN")
logger = logging.getLogger("rollupbot")
logging.basicConfig(level=logging.INFO)

intents = discord.Intents.default()
intents.message_content = True

bot = commands.Bot(
    command_prefix=commands.when_mentioned_or("!"),
    intents=intents,
    case_insensitive=True,
)


@bot.event
async def on_ready():
    logger.info("Bot is ready. Logged in as %s (ID: %s)", bot.user, bot.user.id)
    logger.info("Loaded cogs: %s", list(bot.cogs.keys()))


async def main():
    init_db()
    async with bot:
        # Avoid double-loading across crash/retry loops
        if "rollupbot.cogs.project_rollup" not in bot.extensions:
            await bot.load_extension("rollupbot.cogs.project_rollup")
        logger.info("starting bot")
        await bot.start(token)


def run() -> None:
    if not token:
        raise SystemExit("DISCORD_TOKEN is not set")
    # Robust launcher: retry on transient connect errors (e.g., gateway timeouts)
    while True:
        try:
            asyncio.run(main())
            break  # Normal exit
        except Exception as e:  # noqa: BLE001
            logger.exception("Bot crashed during startup/connect; retrying in 5s: %s", e)
            time.sleep(5)


if __name__ == "__main__":
    run()
