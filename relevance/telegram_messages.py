"""Projection of telethon messages onto MessageRecord, and the fork marker format."""
from __future__ import annotations

import re
from typing import Dict, Optional

from telethon import utils as tl_utils
from telethon.tl import types

from relevance.models import MessageKind, MessageRecord, MessageRef

# This is how a message is recognised as a fork. If you change it, old forks stop being tracked.
FORK_MARKER = "originally said:"
# Reacting with this emoji forks the message into the fork chat.
FORK_REACTION = "🧵"
# https://t.me/c/<channel>/<message> or https://t.me/c/<channel>/<topic>/<message>
_PRIVATE_LINK_RE = re.compile(r"https?://t\.me/c/(\d+)(?:/\d+)?/(\d+)\b")


def _reaction_symbol(reaction) -> Optional[str]:
    if isinstance(reaction, types.ReactionEmoji):
        return reaction.emoticon
    if isinstance(reaction, types.ReactionCustomEmoji):
        return f"custom:{reaction.document_id}"
    return None


def reaction_counts(message) -> Dict[str, int]:
    reactions = getattr(message, "reactions", None)
    counts: Dict[str, int] = {}
    for result in getattr(reactions, "results", None) or ():
        symbol = _reaction_symbol(getattr(result, "reaction", None))
        if symbol:
            counts[symbol] = counts.get(symbol, 0) + int(getattr(result, "count", 0) or 0)
    return counts


def thread_id_of(message) -> Optional[str]:
    """Forum topic id of message, None outside of forum topics."""
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top = getattr(reply_to, "reply_to_top_id", None) or getattr(reply_to, "reply_to_msg_id", None)
    return str(top) if top else None


def message_kind(message) -> MessageKind:
    if getattr(message, "action", None) is not None:
        return MessageKind.SERVICE
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "reply_to_msg_id", None):
        return MessageKind.DEFAULT
    # A plain post inside a forum topic "replies" to the topic itself.
    if getattr(reply_to, "forum_topic", False) and not getattr(reply_to, "reply_to_top_id", None):
        return MessageKind.DEFAULT
    return MessageKind.REPLY


def record_from_message(message) -> MessageRecord:
    return MessageRecord(
        id=str(message.id),
        channel_id=str(message.chat_id),
        content=getattr(message, "raw_text", None) or getattr(message, "message", None) or "",
        reactions=reaction_counts(message),
        kind=message_kind(message),
        thread_id=thread_id_of(message),
    )


def message_link(ref: MessageRef) -> str:
    real_id, _ = tl_utils.resolve_id(int(ref.channel_id))
    return f"https://t.me/c/{real_id}/{ref.message_id}"


def render_fork_text(record: MessageRecord) -> str:
    lines = [FORK_MARKER, record.content or ""]
    reactions = [
        f"{symbol} : {count}"
        for symbol, count in record.reactions.items()
        if not symbol.startswith("custom:") and symbol != FORK_REACTION
    ]
    if reactions:
        lines.append("Reactions: " + "\t".join(reactions))
    lines.append(message_link(record.ref))
    return "\n\n".join(lines)


def fork_source_from_text(text: Optional[str]) -> Optional[MessageRef]:
    """The message a fork was copied from, or None if text is not a fork."""
    if not text or not text.lstrip().startswith(FORK_MARKER):
        return None
    matches = _PRIVATE_LINK_RE.findall(text)
    if not matches:
        return None
    channel, message_id = matches[-1]
    chat_id = tl_utils.get_peer_id(types.PeerChannel(int(channel)))
    return MessageRef(channel_id=str(chat_id), message_id=message_id)
