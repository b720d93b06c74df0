import logging
import os

from dotenv import load_dotenv

from application.services import EconomyService
from infrastructure.config import load_admin_ids, load_settings, load_storage_settings
from infrastructure.db.factory import create_repository
from interfaces.discord.handlers import create_discord_bot


load_dotenv()

DISCORD_TOKEN = os.environ.get("DISCORD_TOKEN")
COMMAND_PREFIX = os.environ.get("COMMAND_PREFIX", "!")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    settings = load_settings()
    repo = create_repository(load_storage_settings())
    service = EconomyService(repo, settings)

    bot = create_discord_bot(service, prefix=COMMAND_PREFIX, admin_ids=load_admin_ids())
    # discord.py would otherwise install its own root handler over ours.
    bot.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
