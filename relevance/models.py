from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

REF_DELIMITER = "+"


class MessageKind(enum.Enum):
    DEFAULT = "default"
    REPLY = "reply"
    SERVICE = "service"


USER_AUTHORED_KINDS = frozenset({MessageKind.DEFAULT, MessageKind.REPLY})


@dataclass(frozen=True, slots=True)
class MessageRef:
    """Channel + message identifier pair; packs into "<channel>+<message>"."""
    channel_id: str
    message_id: str

    def pack(self) -> str:
        return f"{self.channel_id}{REF_DELIMITER}{self.message_id}"

    @classmethod
    def unpack(cls, key: str) -> MessageRef | None:
        if not isinstance(key, str):
            return None
        parts = key.split(REF_DELIMITER)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return None
        return cls(channel_id=parts[0], message_id=parts[1])


@dataclass(frozen=True, slots=True)
class MessageRecord:
    id: str
    channel_id: str
    content: str
    reactions: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    kind: MessageKind = MessageKind.DEFAULT
    thread_id: str | None = None

    @property
    def ref(self) -> MessageRef:
        return MessageRef(channel_id=str(self.channel_id), message_id=str(self.id))

    @property
    def is_user_authored(self) -> bool:
        return self.kind in USER_AUTHORED_KINDS
