import logging
import os
import re

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    # format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    format="%(levelname)s:%(name)s - %(message)s",
)

data_directory = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")
session = os.path.join(data_directory, "thread_relevance.session")

load_dotenv()


def _parse_chat_ids(raw: str) -> tuple[int, ...]:
    ids = []
    for chunk in re.split(r"[\s,]+", raw or ""):
        if not chunk:
            continue
        try:
            ids.append(int(chunk))
        except ValueError:
            logging.warning("Ignoring invalid chat id in INDEX_CHATS: %s", chunk)
    return tuple(ids)


TELEGRAM_RETRY_DELAY_SECONDS = float(os.getenv("TELEGRAM_RETRY_DELAY_SECONDS", "5"))
TELEGRAM_NETWORK_CHECK_HOST = os.getenv("TELEGRAM_NETWORK_CHECK_HOST", "8.8.8.8")
TELEGRAM_NETWORK_CHECK_PORT = int(os.getenv("TELEGRAM_NETWORK_CHECK_PORT", "53"))
TELEGRAM_NETWORK_CHECK_TIMEOUT = float(os.getenv("TELEGRAM_NETWORK_CHECK_TIMEOUT", "3"))
WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("WEB_PORT", "8080"))

IDF_CACHE_DIR = os.getenv("IDF_CACHE_DIR", os.path.join(data_directory, "idf"))
AUTO_SAVE_INTERVAL_SECONDS = float(os.getenv("AUTO_SAVE_INTERVAL_SECONDS", str(5 * 60)))
IDF_REBUILD_INTERVAL_SECONDS = float(os.getenv("IDF_REBUILD_INTERVAL_SECONDS", str(24 * 60 * 60)))
TITLE_MAX_WORDS = int(os.getenv("TITLE_MAX_WORDS", "6"))
TITLE_HISTORY_LIMIT = int(os.getenv("TITLE_HISTORY_LIMIT", "1000")) or None
INDEX_CHATS = _parse_chat_ids(os.getenv("INDEX_CHATS", ""))
FORK_CHAT_ID = int(os.getenv("FORK_CHAT_ID")) if os.getenv("FORK_CHAT_ID") else None
FORK_ON_REACTION = os.getenv("FORK_ON_REACTION", "1").strip().lower() not in ("0", "false", "no", "off")
