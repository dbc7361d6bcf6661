from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from relevance.idf_index import IDFIndex
from relevance.models import MessageRecord, MessageRef
from relevance.registry import IndexRegistry
from relevance.telegram_messages import fork_source_from_text, record_from_message


async def fetch_records(client, chat_id, thread_id=None, limit: Optional[int] = None) -> List[MessageRecord]:
    """Messages of a chat (or of one forum topic) oldest first."""
    kwargs = {"limit": limit}
    if thread_id is not None:
        kwargs["reply_to"] = int(thread_id)
    records = []
    async for message in client.iter_messages(chat_id, **kwargs):
        records.append(record_from_message(message))
    records.reverse()
    return records


def detect_forks(records: Iterable[MessageRecord]) -> List[Tuple[MessageRef, MessageRef]]:
    forks = []
    for record in records:
        source = fork_source_from_text(record.content)
        if source is not None:
            forks.append((source, record.ref))
    return forks


async def rebuild_chat(client, registry: IndexRegistry, chat_id) -> IDFIndex:
    logging.info(f"Rebuilding IDF index for chat {chat_id}")
    records = await fetch_records(client, chat_id)
    # Forks found in this chat belong to the index of the chat they were copied from.
    own_forks, foreign_forks = [], []
    for source, fork in detect_forks(records):
        (own_forks if source.channel_id == str(chat_id) else foreign_forks).append((source, fork))
    index = await asyncio.to_thread(registry.rebuild, str(chat_id), records, own_forks)
    if foreign_forks:
        await asyncio.to_thread(registry.merge_forks, foreign_forks)
    return index


async def rebuild_stale(client, registry: IndexRegistry, chat_ids: Iterable) -> List[str]:
    """Rebuild every configured or live corpus whose snapshot is missing or too old."""
    logging.info("Checking if IDF indexes need rebuilding")
    rebuilt = []
    for corpus_id in registry.corpora_needing_rebuild(map(str, chat_ids)):
        try:
            await rebuild_chat(client, registry, int(corpus_id))
        except Exception as e:
            logging.error(f"Couldn't rebuild IDF index for {corpus_id}: {e.__class__}: {e}")
            continue
        rebuilt.append(corpus_id)
    return rebuilt
