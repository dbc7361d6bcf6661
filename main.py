import asyncio
import logging

from relevance.config import INDEX_CHATS, IDF_REBUILD_INTERVAL_SECONDS, WEB_HOST, WEB_PORT
from relevance.history import rebuild_stale
from relevance.main_handler import MessageHandlers
from relevance.persistence import SnapshotStore
from relevance.registry import IndexRegistry
from relevance.scheduler import PeriodicTask
from relevance.telegram_client import create_client
from relevance.web import start_web_server


if __name__ == "__main__":

    client = create_client()
    registry = IndexRegistry(SnapshotStore())
    handlers = MessageHandlers(registry, chat_ids=INDEX_CHATS)
    handlers.register(client)

    async def check_indexes():
        await rebuild_stale(client, registry, INDEX_CHATS)

    # A stale snapshot is picked up at most interval/16 after it expires.
    rebuild_task = PeriodicTask(IDF_REBUILD_INTERVAL_SECONDS / 16, check_indexes, name="idf-rebuild")

    async def app_main():
        runner = await start_web_server(registry, client, host=WEB_HOST, port=WEB_PORT)
        for chat_id in INDEX_CHATS:
            await asyncio.to_thread(registry.index_for, str(chat_id))
        await check_indexes()
        rebuild_task.start()
        logging.info("Client started")
        try:
            await client.run_until_disconnected()
        finally:
            await rebuild_task.stop()
            # Persist state, including anything waiting on an autosave timer
            failed = await asyncio.to_thread(registry.close)
            if failed:
                logging.error("Couldn't persist IDF indexes on shutdown: %s", ", ".join(failed))
            await runner.cleanup()


    try:
        client.loop.run_until_complete(app_main())
    except KeyboardInterrupt:
        logging.info("Interrupted, saving IDF indexes")
        registry.close()
