from collections.abc import MutableMapping
from datetime import datetime
from typing import Dict, Iterator, List, Mapping, Optional, TypedDict


class LastMessageDocument(TypedDict):
    message_id: str
    sender_id: str
    content: str
    timestamp: datetime


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # sorted participant ids joined by "|", unique per participant set
    participants_key: str
    last_message: Optional[LastMessageDocument]
    # per-participant "has seen the latest message" flag
    is_read: Dict[str, bool]
    created_at: datetime
    updated_at: datetime


def participants_key(participants) -> str:
    return "|".join(sorted(set(participants)))


def _check_user_key(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id:
        raise ValueError("user id must be a non-empty string")
    if "." in user_id or user_id.startswith("$"):
        raise ValueError(f"user id {user_id!r} cannot be used as a document key")
    return user_id


class ReadFlags(MutableMapping):
    """Per-participant read flags of a conversation.

    Keys are user ids, values are booleans. A user without an entry has not
    seen the latest message.
    """

    def __init__(self, flags: Optional[Mapping[str, bool]] = None) -> None:
        self._flags: Dict[str, bool] = {}
        for user_id, value in (flags or {}).items():
            self[user_id] = value

    @classmethod
    def all_read(cls, participants) -> "ReadFlags":
        return cls({user_id: True for user_id in participants})

    def __getitem__(self, user_id: str) -> bool:
        return self._flags[user_id]

    def __setitem__(self, user_id: str, value: bool) -> None:
        self._flags[_check_user_key(user_id)] = bool(value)

    def __delitem__(self, user_id: str) -> None:
        del self._flags[user_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        return f"ReadFlags({self._flags!r})"

    def is_read(self, user_id: str) -> bool:
        return self._flags.get(user_id, False)

    def to_document(self) -> Dict[str, bool]:
        return dict(self._flags)
