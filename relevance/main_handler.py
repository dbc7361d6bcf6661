from __future__ import annotations

import asyncio
import enum
import logging
import re
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

from telethon import events
from telethon import utils as tl_utils
from telethon.tl import types

from relevance.config import FORK_CHAT_ID, FORK_ON_REACTION, TITLE_HISTORY_LIMIT, TITLE_MAX_WORDS
from relevance.history import fetch_records
from relevance.models import MessageRecord, MessageRef
from relevance.registry import IndexRegistry
from relevance.telegram_messages import (
    FORK_REACTION,
    fork_source_from_text,
    reaction_counts,
    record_from_message,
    render_fork_text,
)
from relevance.tfidf import suggest_title

TITLE_COMMAND_RE = re.compile(r"^/title(?:@\w+)?(?:\s+(\d+))?\s*$")
FORK_COMMAND_RE = re.compile(r"^/fork(?:@\w+)?\s*$")


class EventKind(enum.Enum):
    NEW = "new"
    EDITED = "edited"
    DELETED = "deleted"
    REACTIONS = "reactions"


def _is_command(record: MessageRecord) -> bool:
    return record.content.lstrip().startswith("/")


class MessageHandlers:
    """Telegram event callbacks wired to an IndexRegistry."""

    def __init__(
        self,
        registry: IndexRegistry,
        chat_ids: Iterable[int] = (),
        fork_chat_id: Optional[int] = FORK_CHAT_ID,
        title_max_words: int = TITLE_MAX_WORDS,
        title_history_limit: Optional[int] = TITLE_HISTORY_LIMIT,
        fork_on_reaction: bool = FORK_ON_REACTION,
    ) -> None:
        self.registry = registry
        self.chat_ids = {str(chat_id) for chat_id in chat_ids}
        self.fork_chat_id = fork_chat_id
        self.title_max_words = title_max_words
        self.title_history_limit = title_history_limit
        self.fork_on_reaction = fork_on_reaction
        # Reaction forks sent by this process whose copy may not be indexed yet.
        self._reaction_forks: Set[str] = set()
        self._dispatch: Dict[EventKind, Callable[..., Awaitable[None]]] = {
            EventKind.NEW: self.handle_new_message,
            EventKind.EDITED: self.handle_message_edited,
            EventKind.DELETED: self.handle_message_deleted,
            EventKind.REACTIONS: self.handle_reactions,
        }

    def is_indexed_chat(self, chat_id) -> bool:
        return not self.chat_ids or str(chat_id) in self.chat_ids

    def register(self, client) -> None:
        client.add_event_handler(self._handler(EventKind.NEW), events.NewMessage())
        client.add_event_handler(self._handler(EventKind.EDITED), events.MessageEdited())
        client.add_event_handler(self._handler(EventKind.DELETED), events.MessageDeleted())

        # Raw updates carry no client, so bind it here.
        async def on_reactions(update):
            await self.dispatch(EventKind.REACTIONS, client, update)

        client.add_event_handler(on_reactions, events.Raw(types.UpdateMessageReactions))

    def _handler(self, kind: EventKind):
        async def on_event(event):
            await self.dispatch(kind, event)
        return on_event

    async def dispatch(self, kind: EventKind, *args) -> None:
        try:
            await self._dispatch[kind](*args)
        except Exception:
            logging.exception(f"Error handling {kind.value} message event")

    # region events ------------------------------------------------------
    async def handle_new_message(self, event) -> None:
        message = event.message
        record = record_from_message(message)

        source = fork_source_from_text(record.content)
        if source is not None:
            logging.info(f"Indexing {record.ref.pack()} which appears to be a fork of {source.pack()}")
            index = await asyncio.to_thread(self.registry.index_for, source.channel_id)
            index.note_forked_message(source, record.ref)

        if getattr(message, "out", False):
            if await self.handle_command(event, record):
                return

        if not self.is_indexed_chat(record.channel_id):
            return
        index = await asyncio.to_thread(self.registry.index_for, record.channel_id)
        index.process_message(record)

    async def handle_message_edited(self, event) -> None:
        record = record_from_message(event.message)
        if self.is_indexed_chat(record.channel_id):
            index = await asyncio.to_thread(self.registry.index_for, record.channel_id)
            index.process_message(record)
        await self.update_forked_messages(event.client, record)

    async def handle_message_deleted(self, event) -> None:
        chat_id = getattr(event, "chat_id", None)
        # Deletions outside of channels and supergroups don't say where they happened.
        if chat_id is None or not self.is_indexed_chat(chat_id):
            return
        index = self.registry.get(str(chat_id))
        if index is None:
            return
        for message_id in event.deleted_ids:
            index.forget_message(MessageRef(channel_id=str(chat_id), message_id=str(message_id)))

    async def handle_reactions(self, client, update) -> None:
        """Fork a message the first time it gets the fork reaction."""
        if not self.fork_on_reaction or self.fork_chat_id is None:
            return
        if reaction_counts(update).get(FORK_REACTION, 0) <= 0:
            return
        chat_id = str(tl_utils.get_peer_id(update.peer))
        if not self.is_indexed_chat(chat_id):
            return
        source = MessageRef(channel_id=chat_id, message_id=str(update.msg_id))
        index = await asyncio.to_thread(self.registry.index_for, chat_id)
        # Reaction updates repeat on every change, fork only once.
        if source.pack() in self._reaction_forks or index.message_forks(source):
            return
        self._reaction_forks.add(source.pack())
        message = await client.get_messages(int(chat_id), ids=update.msg_id)
        if message is None:
            self._reaction_forks.discard(source.pack())
            return
        logging.info(f"Forking {source.pack()} because it got a {FORK_REACTION} reaction")
        try:
            await self.fork_message(client, message)
        except Exception:
            self._reaction_forks.discard(source.pack())
            raise

    # region forks -------------------------------------------------------
    async def update_forked_messages(self, client, source: MessageRecord) -> int:
        """Re-render every fork of source after it changed."""
        index = self.registry.get(source.channel_id)
        if index is None:
            return 0
        forks = index.message_forks(source.ref)
        if not forks:
            return 0
        text = render_fork_text(source)
        updated = 0
        for fork in forks:
            try:
                await client.edit_message(int(fork.channel_id), int(fork.message_id), text, link_preview=False)
            except Exception as e:
                logging.error(f"Couldn't update forked message {fork.pack()} of {source.ref.pack()}: {e.__class__}: {e}")
                continue
            updated += 1
            logging.info(f"Updated fork {fork.pack()} because {source.ref.pack()} changed")
        return updated

    async def fork_message(self, client, source_message) -> None:
        if self.fork_chat_id is None:
            raise RuntimeError("FORK_CHAT_ID is not configured")
        record = record_from_message(source_message)
        await client.send_message(self.fork_chat_id, render_fork_text(record), link_preview=False)

    # region commands ----------------------------------------------------
    async def handle_command(self, event, record: MessageRecord) -> bool:
        text = record.content.strip()
        title_match = TITLE_COMMAND_RE.match(text)
        if title_match:
            max_words = int(title_match.group(1)) if title_match.group(1) else self.title_max_words
            await self.suggest_thread_title(event, record, max(max_words, 1))
            return True
        if FORK_COMMAND_RE.match(text):
            reply = await event.message.get_reply_message()
            if reply is None:
                await event.reply("Reply to the message you want to fork")
            else:
                await self.fork_message(event.client, reply)
            return True
        return False

    async def suggest_thread_title(self, event, record: MessageRecord, max_words: int) -> str:
        records = await fetch_records(
            event.client,
            event.chat_id,
            thread_id=record.thread_id,
            limit=self.title_history_limit,
        )
        records = [r for r in records if not _is_command(r)]
        index = await asyncio.to_thread(self.registry.index_for, record.channel_id)
        words = index.tfidf_for_messages(records).auto_top_words(max_words)
        if not words:
            await event.reply("Not enough text here to suggest a title")
            return ""
        title = suggest_title(words)
        await event.reply(f"Suggested thread title: {title}")
        return title
