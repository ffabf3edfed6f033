"""Normalization of raw broker records.

Upstream platforms disagree on record shapes, so each semantic field is
read through an ordered chain of extractors. The first extractor that
yields a truthy value wins; if none does, the field default applies.

Usage:
    chat = normalize_chat(record)
    if chat is None:
        ...  # record carries no usable id

    message = normalize_message(record, connection_id="conn-1", chat_id=chat.external_id)
    print(message.external_id, message.timestamp)
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Sequence


Extractor = Callable[[dict], Any]

# Epoch seconds, optionally fractional ("1753303953.454369")
EPOCH_PATTERN = re.compile(r"^\d+\.?\d*$")

# Integer strings longer than this are epoch milliseconds
EPOCH_SECONDS_MAX_DIGITS = 10

UNNAMED_CHAT = "Unnamed Chat"
UNKNOWN_SENDER = "Unknown"


# =============================================================================
# EXTRACTORS
# =============================================================================


def field_path(*keys: str) -> Extractor:
    """Build an extractor reading a (possibly nested) key path."""

    def extract(record: dict) -> Any:
        value: Any = record
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    extract.__name__ = "field_path_" + "_".join(keys)
    return extract


def first_hit(
    record: dict,
    extractors: Sequence[Extractor],
    default: Any = None,
) -> Any:
    """Return the first truthy value produced by ``extractors``."""
    for extractor in extractors:
        value = extractor(record)
        if value:
            return value
    return default


CHAT_ID_FIELDS: tuple[Extractor, ...] = (
    field_path("id"),
    field_path("fields", "id"),
)
CHAT_NAME_FIELDS: tuple[Extractor, ...] = (
    field_path("fields", "name"),
    field_path("rawFields", "name"),
    field_path("name"),
    field_path("title"),
    field_path("subject"),
)
CHAT_PARTICIPANT_FIELDS: tuple[Extractor, ...] = (
    field_path("participants"),
    field_path("members"),
    field_path("fields", "participants"),
    field_path("fields", "members"),
)
CHAT_LAST_MESSAGE_FIELDS: tuple[Extractor, ...] = (
    field_path("last_message"),
    field_path("recent_message"),
    field_path("fields", "last_message"),
)
CHAT_LAST_MESSAGE_TIME_FIELDS: tuple[Extractor, ...] = (
    field_path("last_message_time"),
    field_path("updated_at"),
    field_path("fields", "updated"),
    field_path("rawFields", "ts"),
)

MESSAGE_ID_FIELDS: tuple[Extractor, ...] = (
    field_path("id"),
    field_path("fields", "id"),
)
MESSAGE_CONTENT_FIELDS: tuple[Extractor, ...] = (
    field_path("fields", "text"),
    field_path("rawFields", "text"),
    field_path("content"),
    field_path("message"),
    field_path("text"),
)
MESSAGE_SENDER_FIELDS: tuple[Extractor, ...] = (
    field_path("fields", "ownerId"),
    field_path("rawFields", "user"),
    field_path("sender"),
    field_path("from"),
    field_path("author"),
)
MESSAGE_TIMESTAMP_FIELDS: tuple[Extractor, ...] = (
    field_path("rawFields", "ts"),
    field_path("fields", "timestamp"),
    field_path("timestamp"),
    field_path("created_at"),
)

USER_ID_FIELDS: tuple[Extractor, ...] = (
    field_path("userId"),
    field_path("id"),
    field_path("user_id"),
    field_path("externalUserId"),
)
USER_NAME_FIELDS: tuple[Extractor, ...] = (
    field_path("name"),
    field_path("username"),
    field_path("displayName"),
    field_path("display_name"),
    field_path("realName"),
    field_path("real_name"),
)
USER_EMAIL_FIELDS: tuple[Extractor, ...] = (
    field_path("email"),
    field_path("mail"),
)


# =============================================================================
# TIMESTAMPS
# =============================================================================


def to_iso(dt: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with milliseconds and a ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def iso_now() -> str:
    """Current time in the canonical timestamp format."""
    return to_iso(datetime.now(timezone.utc))


def _from_epoch_millis(millis: int) -> Optional[str]:
    try:
        dt = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return to_iso(dt.replace(microsecond=(millis % 1000) * 1000))


def format_timestamp(value: Any) -> Optional[str]:
    """Normalize an upstream timestamp to canonical ISO-8601 UTC.

    - ``"1753303953.454369"`` (fractional epoch seconds) -> milliseconds
    - integer strings longer than ten digits are epoch milliseconds
    - shorter integer strings and numbers are epoch seconds
    - ISO-8601 strings are re-emitted in canonical form
    - anything else yields None

    Never raises.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return to_iso(value)

    if isinstance(value, (int, float)):
        value = str(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if EPOCH_PATTERN.match(text):
        try:
            if "." in text:
                millis = int(Decimal(text) * 1000)
            elif len(text) > EPOCH_SECONDS_MAX_DIGITS:
                millis = int(text)
            else:
                millis = int(text) * 1000
        except (InvalidOperation, ValueError):
            return None
        return _from_epoch_millis(millis)

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return to_iso(datetime.fromisoformat(iso_text))
    except ValueError:
        return None


# =============================================================================
# NORMALIZED RECORDS
# =============================================================================


@dataclass
class NormalizedChat:
    """A remote conversation in local shape."""

    external_id: str
    name: str
    participants: list = field(default_factory=list)
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.external_id,
            "name": self.name,
            "participants": self.participants,
            "lastMessage": self.last_message,
            "lastMessageTime": self.last_message_time,
        }


@dataclass
class NormalizedMessage:
    """A remote message in local shape."""

    external_id: str
    content: str
    sender: str
    timestamp: Optional[str]
    generated_id: bool = False


@dataclass
class NormalizedUser:
    """The customer's identity on a platform."""

    external_user_id: Optional[str]
    name: Optional[str]
    email: Optional[str]


def normalize_chat(record: dict) -> Optional[NormalizedChat]:
    """Normalize a conversation record; None when it has no id."""
    external_id = first_hit(record, CHAT_ID_FIELDS)
    if not external_id:
        return None

    participants = first_hit(record, CHAT_PARTICIPANT_FIELDS, default=[])
    if not isinstance(participants, list):
        participants = [participants]

    last_message = first_hit(record, CHAT_LAST_MESSAGE_FIELDS)
    last_message_time = first_hit(record, CHAT_LAST_MESSAGE_TIME_FIELDS)

    return NormalizedChat(
        external_id=str(external_id),
        name=str(first_hit(record, CHAT_NAME_FIELDS, default=UNNAMED_CHAT)),
        participants=participants,
        last_message=str(last_message) if last_message else None,
        last_message_time=format_timestamp(last_message_time),
    )


def compute_message_key(
    connection_id: str,
    chat_id: str,
    sender: str,
    timestamp: Any,
    content: str,
) -> str:
    """Deterministic dedup key for messages that carry no upstream id."""
    material = "\x1f".join(
        [connection_id, chat_id, sender, str(timestamp or ""), content]
    )
    return "gen-" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


def normalize_message(
    record: dict,
    connection_id: str,
    chat_id: str,
) -> NormalizedMessage:
    """Normalize a message record.

    Records without an id get a key derived from their content so that
    re-importing the same page is idempotent.
    """
    content = str(first_hit(record, MESSAGE_CONTENT_FIELDS, default=""))
    sender = str(first_hit(record, MESSAGE_SENDER_FIELDS, default=UNKNOWN_SENDER))
    raw_timestamp = first_hit(record, MESSAGE_TIMESTAMP_FIELDS)

    external_id = first_hit(record, MESSAGE_ID_FIELDS)
    generated = not external_id
    if generated:
        external_id = compute_message_key(
            connection_id, chat_id, sender, raw_timestamp, content
        )

    return NormalizedMessage(
        external_id=str(external_id),
        content=content,
        sender=sender,
        timestamp=format_timestamp(raw_timestamp),
        generated_id=generated,
    )


def normalize_user(record: dict) -> NormalizedUser:
    """Normalize a ``get-user`` action output."""
    user_id = first_hit(record, USER_ID_FIELDS)
    name = first_hit(record, USER_NAME_FIELDS)
    email = first_hit(record, USER_EMAIL_FIELDS)
    return NormalizedUser(
        external_user_id=str(user_id) if user_id else None,
        name=str(name) if name else None,
        email=str(email) if email else None,
    )
