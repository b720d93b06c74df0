import logging
import os

from dotenv import load_dotenv

from application.services import EconomyService
from infrastructure.config import load_admin_ids, load_settings, load_storage_settings
from infrastructure.db.factory import create_repository
from interfaces.telegram.handlers import create_telegram_bot


load_dotenv()

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not TELEGRAM_TOKEN:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    settings = load_settings()
    repo = create_repository(load_storage_settings())
    service = EconomyService(repo, settings)

    bot = create_telegram_bot(TELEGRAM_TOKEN, service, admin_ids=load_admin_ids())
    logger.info("Telegram bot polling")
    bot.infinity_polling()


if __name__ == "__main__":
    main()
