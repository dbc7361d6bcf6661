import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

from telethon.tl import types

from relevance.history import rebuild_chat, rebuild_stale
from relevance.main_handler import EventKind, MessageHandlers
from relevance.models import MessageRecord, MessageRef
from relevance.persistence import SnapshotStore
from relevance.registry import IndexRegistry
from relevance.telegram_messages import FORK_MARKER, FORK_REACTION, render_fork_text

CHAT = -1001111111111
FORK_CHAT = -1002222222222
OTHER_CHAT = -1003333333333

INPUTS = [
    "the the the foo bar baz is a procrastinate",
    "procrastination Procrastinate blarg baz the a is diamonds",
    "is is is a a a a is a the the the the the foo bar rare",
]


def _tg_message(message_id, chat_id, text, out=False, reply=None):
    return SimpleNamespace(
        id=message_id,
        chat_id=chat_id,
        raw_text=text,
        reactions=None,
        reply_to=None,
        action=None,
        out=out,
        get_reply_message=AsyncMock(return_value=reply),
    )


def _fork_text(source_chat, source_id, content):
    return render_fork_text(MessageRecord(id=str(source_id), channel_id=str(source_chat), content=content))


class FakeClient:
    def __init__(self, history=()):
        # Oldest first, like a chat scrolled to the top.
        self.history = list(history)
        self.iter_calls = []
        self.edit_message = AsyncMock()
        self.send_message = AsyncMock()
        self.get_messages = AsyncMock(return_value=None)

    async def iter_messages(self, chat_id, limit=None, reply_to=None):
        self.iter_calls.append((chat_id, limit, reply_to))
        for message in reversed(self.history):
            if message.chat_id == chat_id:
                yield message


def _event(message, client):
    return SimpleNamespace(message=message, client=client, chat_id=message.chat_id, reply=AsyncMock())


class HandlerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.registry = IndexRegistry(SnapshotStore(Path(self._tmp.name), auto_save_interval=3600))
        self.addCleanup(self.registry.close)
        self.handlers = MessageHandlers(self.registry, chat_ids=[CHAT, FORK_CHAT], fork_chat_id=FORK_CHAT)
        self.client = FakeClient()


class NewMessageTests(HandlerTestCase):
    async def test_indexes_messages_of_watched_chats(self):
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(1, CHAT, "blarg diamonds"), self.client))
        index = self.registry.get(str(CHAT))
        self.assertEqual(index.document_count, 1)
        self.assertEqual(index.frequencies.document_word_count("blarg"), 1)

    async def test_ignores_other_chats(self):
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(1, OTHER_CHAT, "blarg"), self.client))
        self.assertIsNone(self.registry.get(str(OTHER_CHAT)))

    async def test_notes_forks_in_source_index(self):
        text = _fork_text(CHAT, 42, "blarg diamonds")
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(5, FORK_CHAT, text), self.client))
        source_index = self.registry.get(str(CHAT))
        self.assertEqual(source_index.message_forks(MessageRef(str(CHAT), "42")), [MessageRef(str(FORK_CHAT), "5")])
        # The fork itself is an ordinary message of the chat it was posted in.
        self.assertEqual(self.registry.get(str(FORK_CHAT)).document_count, 1)

    async def test_errors_are_logged_not_raised(self):
        broken = SimpleNamespace(message=None, client=self.client)
        with self.assertLogs(level="ERROR"):
            await self.handlers.dispatch(EventKind.NEW, broken)


class EditAndDeleteTests(HandlerTestCase):
    async def test_edit_reindexes_and_updates_forks(self):
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(42, CHAT, "blarg"), self.client))
        fork_text = _fork_text(CHAT, 42, "blarg")
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(5, FORK_CHAT, fork_text), self.client))

        edited = _tg_message(42, CHAT, "diamonds")
        await self.handlers.dispatch(EventKind.EDITED, _event(edited, self.client))

        index = self.registry.get(str(CHAT))
        self.assertEqual(index.document_count, 1)
        self.assertEqual(index.frequencies.document_word_counts(), {"diamond": 1})
        self.client.edit_message.assert_awaited_once()
        args, kwargs = self.client.edit_message.await_args
        self.assertEqual(args[:2], (FORK_CHAT, 5))
        self.assertTrue(args[2].startswith(FORK_MARKER))
        self.assertIn("diamonds", args[2])
        self.assertEqual(kwargs, {"link_preview": False})

    async def test_failed_fork_update_is_logged(self):
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(42, CHAT, "blarg"), self.client))
        self.registry.get(str(CHAT)).note_forked_message(MessageRef(str(CHAT), "42"), MessageRef(str(FORK_CHAT), "5"))
        self.client.edit_message.side_effect = RuntimeError("message not modified")
        with self.assertLogs(level="ERROR"):
            updated = await self.handlers.update_forked_messages(
                self.client, MessageRecord(id="42", channel_id=str(CHAT), content="diamonds")
            )
        self.assertEqual(updated, 0)

    async def test_delete_forgets_messages(self):
        for i, text in enumerate(INPUTS):
            await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(i, CHAT, text), self.client))
        deleted = SimpleNamespace(chat_id=CHAT, deleted_ids=[1, 99])
        await self.handlers.dispatch(EventKind.DELETED, deleted)
        index = self.registry.get(str(CHAT))
        self.assertEqual(index.document_count, 2)
        self.assertNotIn("blarg", index.frequencies.document_word_counts())

    async def test_delete_without_chat_is_ignored(self):
        await self.handlers.dispatch(EventKind.NEW, _event(_tg_message(1, CHAT, "blarg"), self.client))
        await self.handlers.dispatch(EventKind.DELETED, SimpleNamespace(chat_id=None, deleted_ids=[1]))
        self.assertEqual(self.registry.get(str(CHAT)).document_count, 1)


class CommandTests(HandlerTestCase):
    async def asyncSetUp(self) -> None:
        history = [_tg_message(i, CHAT, text) for i, text in enumerate(INPUTS)]
        for message in history:
            await self.handlers.dispatch(EventKind.NEW, _event(message, self.client))
        self.client.history = history

    async def test_title_suggestion(self):
        command = _tg_message(10, CHAT, "/title", out=True)
        self.client.history.append(command)
        event = _event(command, self.client)
        await self.handlers.dispatch(EventKind.NEW, event)

        event.reply.assert_awaited_once()
        reply = event.reply.await_args.args[0]
        self.assertTrue(reply.startswith("Suggested thread title: "))
        self.assertEqual(sorted(reply.split(": ", 1)[1].split("-")), ["blarg", "diamonds"])
        self.assertEqual(self.client.iter_calls, [(CHAT, self.handlers.title_history_limit, None)])
        # Commands are not indexed.
        self.assertEqual(self.registry.get(str(CHAT)).document_count, 3)

    async def test_title_word_limit(self):
        command = _tg_message(10, CHAT, "/title 1", out=True)
        event = _event(command, self.client)
        await self.handlers.dispatch(EventKind.NEW, event)
        title = event.reply.await_args.args[0].split(": ", 1)[1]
        self.assertIn(title, ("blarg", "diamonds"))

    async def test_incoming_commands_are_plain_messages(self):
        command = _tg_message(10, CHAT, "/title", out=False)
        event = _event(command, self.client)
        await self.handlers.dispatch(EventKind.NEW, event)
        event.reply.assert_not_awaited()
        self.assertEqual(self.registry.get(str(CHAT)).document_count, 4)

    async def test_fork_command(self):
        source = _tg_message(1, CHAT, INPUTS[1])
        command = _tg_message(11, CHAT, "/fork", out=True, reply=source)
        await self.handlers.dispatch(EventKind.NEW, _event(command, self.client))
        self.client.send_message.assert_awaited_once()
        args, kwargs = self.client.send_message.await_args
        self.assertEqual(args[0], FORK_CHAT)
        self.assertTrue(args[1].startswith(FORK_MARKER))
        self.assertIn("https://t.me/c/1111111111/1", args[1])

    async def test_fork_command_without_reply(self):
        command = _tg_message(11, CHAT, "/fork", out=True)
        event = _event(command, self.client)
        await self.handlers.dispatch(EventKind.NEW, event)
        event.reply.assert_awaited_once()
        self.client.send_message.assert_not_awaited()


def _reactions_update(chat_id, message_id, symbol, count=1):
    channel_id = int(str(chat_id)[len("-100"):])
    return types.UpdateMessageReactions(
        peer=types.PeerChannel(channel_id),
        msg_id=message_id,
        reactions=types.MessageReactions(
            results=[types.ReactionCount(reaction=types.ReactionEmoji(emoticon=symbol), count=count)]
        ),
    )


class ReactionForkTests(HandlerTestCase):
    def setUp(self) -> None:
        super().setUp()
        reactions = types.MessageReactions(
            results=[
                types.ReactionCount(reaction=types.ReactionEmoji(emoticon=FORK_REACTION), count=1),
                types.ReactionCount(reaction=types.ReactionEmoji(emoticon="🔥"), count=2),
            ]
        )
        self.source = _tg_message(1, CHAT, INPUTS[1])
        self.source.reactions = reactions
        self.client.get_messages.return_value = self.source

    async def test_fork_reaction_forks_once(self):
        update = _reactions_update(CHAT, 1, FORK_REACTION)
        await self.handlers.dispatch(EventKind.REACTIONS, self.client, update)
        await self.handlers.dispatch(EventKind.REACTIONS, self.client, update)

        self.client.get_messages.assert_awaited_once_with(CHAT, ids=1)
        self.client.send_message.assert_awaited_once()
        args, _ = self.client.send_message.await_args
        self.assertEqual(args[0], FORK_CHAT)
        self.assertTrue(args[1].startswith(FORK_MARKER))
        self.assertIn("🔥 : 2", args[1])
        self.assertNotIn(FORK_REACTION, args[1])

    async def test_already_forked_message_is_skipped(self):
        self.registry.index_for(str(CHAT)).note_forked_message(MessageRef(str(CHAT), "1"), MessageRef(str(FORK_CHAT), "9"))
        await self.handlers.dispatch(EventKind.REACTIONS, self.client, _reactions_update(CHAT, 1, FORK_REACTION))
        self.client.send_message.assert_not_awaited()

    async def test_other_reactions_are_ignored(self):
        await self.handlers.dispatch(EventKind.REACTIONS, self.client, _reactions_update(CHAT, 1, "👍"))
        self.client.get_messages.assert_not_awaited()
        self.client.send_message.assert_not_awaited()

    async def test_disabled(self):
        handlers = MessageHandlers(self.registry, fork_chat_id=FORK_CHAT, fork_on_reaction=False)
        await handlers.dispatch(EventKind.REACTIONS, self.client, _reactions_update(CHAT, 1, FORK_REACTION))
        self.client.send_message.assert_not_awaited()

    async def test_failed_fork_can_be_retried(self):
        self.client.send_message.side_effect = [RuntimeError("flood wait"), None]
        update = _reactions_update(CHAT, 1, FORK_REACTION)
        with self.assertLogs(level="ERROR"):
            await self.handlers.dispatch(EventKind.REACTIONS, self.client, update)
        await self.handlers.dispatch(EventKind.REACTIONS, self.client, update)
        self.assertEqual(self.client.send_message.await_count, 2)


class HistoryRebuildTests(HandlerTestCase):
    async def test_rebuild_chat_splits_own_and_foreign_forks(self):
        self.client.history = [
            _tg_message(1, CHAT, "blarg diamonds"),
            _tg_message(2, CHAT, _fork_text(CHAT, 1, "blarg diamonds")),
            _tg_message(3, CHAT, _fork_text(OTHER_CHAT, 7, "rare")),
        ]
        index = await rebuild_chat(self.client, self.registry, CHAT)
        self.assertIs(self.registry.get(str(CHAT)), index)
        self.assertEqual(index.document_count, 3)
        self.assertEqual(index.message_forks(MessageRef(str(CHAT), "1")), [MessageRef(str(CHAT), "2")])
        other = self.registry.get(str(OTHER_CHAT))
        self.assertEqual(other.message_forks(MessageRef(str(OTHER_CHAT), "7")), [MessageRef(str(CHAT), "3")])

    async def test_rebuild_stale_skips_fresh_snapshots(self):
        self.client.history = [_tg_message(1, CHAT, "blarg")]
        self.assertEqual(await rebuild_stale(self.client, self.registry, [CHAT]), [str(CHAT)])
        self.assertEqual(await rebuild_stale(self.client, self.registry, [CHAT]), [])


if __name__ == "__main__":
    unittest.main()
