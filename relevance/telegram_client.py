from __future__ import annotations

import logging
import os
import socket
import time

from telethon.sync import TelegramClient

from relevance.config import (
    TELEGRAM_NETWORK_CHECK_HOST,
    TELEGRAM_NETWORK_CHECK_PORT,
    TELEGRAM_NETWORK_CHECK_TIMEOUT,
    TELEGRAM_RETRY_DELAY_SECONDS,
    session,
)

logger = logging.getLogger(__name__)


def _wait_for_internet_connection(delay: float, host: str, port: int, timeout: float) -> None:
    """Block until the OS confirms a TCP connection can be established."""
    while True:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                logger.info("Internet connection detected (%s:%s)", host, port)
                return
        except OSError as exc:
            logger.warning(
                "Internet unreachable (%s:%s) - %s; retrying in %s seconds",
                host,
                port,
                exc,
                delay,
            )
            time.sleep(delay)


def create_client() -> TelegramClient:
    app_id = os.getenv("TELEGRAM_APP_ID")
    api_hash = os.getenv("TELEGRAM_API_HASH")
    if not app_id or not api_hash:
        raise RuntimeError("TELEGRAM_APP_ID and TELEGRAM_API_HASH must be set")
    os.makedirs(os.path.dirname(session), exist_ok=True)
    client = TelegramClient(session, int(app_id), api_hash)
    _wait_for_internet_connection(
        TELEGRAM_RETRY_DELAY_SECONDS,
        TELEGRAM_NETWORK_CHECK_HOST,
        TELEGRAM_NETWORK_CHECK_PORT,
        TELEGRAM_NETWORK_CHECK_TIMEOUT,
    )
    client.start()
    return client


__all__ = ["create_client"]
