"""Wire format: NUL-terminated JSON frames exchanged by clients and the broker."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Union

FRAME_TERMINATOR = b"\0"

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class ProtocolError(ValueError):
    """A frame could not be decoded into the expected message."""


class Role(IntEnum):
    """Role a client announces in its first frame."""

    PRODUCER = 0
    CONSUMER = 1


@dataclass(frozen=True)
class CreateTopic:
    topic_name: str
    partitions: int


@dataclass(frozen=True)
class DeleteTopic:
    topic_name: str


@dataclass(frozen=True)
class MessageTopic:
    key: str | None
    topic_name: str
    data: bytes


@dataclass(frozen=True)
class JoinConsumer:
    topic_name: str


@dataclass(frozen=True)
class LeaveConsumer:
    topic_name: str


@dataclass(frozen=True)
class GetOffsetMessage:
    topic_name: str
    partition: int
    offset: int


@dataclass(frozen=True)
class CommitOffset:
    topic_name: str
    partition: int
    offset: int


ProducerRequest = Union[CreateTopic, DeleteTopic, MessageTopic]
ConsumerRequest = Union[JoinConsumer, LeaveConsumer, GetOffsetMessage, CommitOffset]


# --- framing -----------------------------------------------------------------


def encode_frame(payload: Any) -> bytes:
    """Serialise ``payload`` as compact JSON followed by the frame terminator."""
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8") + FRAME_TERMINATOR


async def read_frame(reader: asyncio.StreamReader) -> bytes | None:
    """Read one frame without its terminator.

    Returns ``None`` at end of stream; trailing bytes left without a
    terminator when the stream ends are returned as a final frame.
    """
    try:
        data = await reader.readuntil(FRAME_TERMINATOR)
    except asyncio.IncompleteReadError as exc:
        return exc.partial or None
    except asyncio.LimitOverrunError as exc:
        raise ProtocolError("frame exceeds the reader limit") from exc
    return data[: -len(FRAME_TERMINATOR)]


def _load(frame: bytes) -> Any:
    frame = bytes(frame)
    if frame.endswith(FRAME_TERMINATOR):
        frame = frame[: -len(FRAME_TERMINATOR)]
    try:
        return json.loads(frame)
    except ValueError as exc:
        raise ProtocolError(f"invalid JSON frame: {exc}") from exc


# --- field validation ----------------------------------------------------------


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ProtocolError(f"{what} must be a JSON object")
    return value


def _required(body: dict, name: str) -> Any:
    try:
        return body[name]
    except KeyError:
        raise ProtocolError(f"missing field {name!r}") from None


def _string(body: dict, name: str) -> str:
    value = _required(body, name)
    if not isinstance(value, str):
        raise ProtocolError(f"field {name!r} must be a string")
    return value


def _optional_string(body: dict, name: str) -> str | None:
    value = body.get(name)
    if value is not None and not isinstance(value, str):
        raise ProtocolError(f"field {name!r} must be a string or null")
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _i32(body: dict, name: str) -> int:
    value = _required(body, name)
    if not _is_int(value) or not _I32_MIN <= value <= _I32_MAX:
        raise ProtocolError(f"field {name!r} must be a 32-bit integer")
    return value


def _byte_list(value: Any, name: str) -> bytes:
    if not isinstance(value, list) or not all(
        _is_int(item) and 0 <= item <= 255 for item in value
    ):
        raise ProtocolError(f"field {name!r} must be a list of bytes")
    return bytes(value)


def _tagged(frame: bytes) -> tuple[str, dict]:
    envelope = _object(_load(frame), "frame")
    variant = _object(_required(envelope, "message"), "message")
    if len(variant) != 1:
        raise ProtocolError("message must hold exactly one variant")
    ((tag, body),) = variant.items()
    return tag, _object(body, tag)


# --- handshake -------------------------------------------------------------------


def encode_init(role: Role | int) -> bytes:
    """Build the opening frame announcing ``role``."""
    return encode_frame({"message": int(role)})


def decode_init(frame: bytes) -> Role | int:
    """Decode the opening frame: a :class:`Role`, or the raw integer if unknown."""
    body = _object(_load(frame), "frame")
    value = _i32(body, "message")
    try:
        return Role(value)
    except ValueError:
        return value


# --- producer requests ----------------------------------------------------------


def _encode_request(message: Any, tags: dict[type, str]) -> bytes:
    try:
        tag = tags[type(message)]
    except KeyError:
        raise TypeError(f"cannot encode {type(message).__name__}") from None
    body = dict(vars(message))
    if isinstance(message, MessageTopic):
        body = {"key": message.key, "topic_name": message.topic_name, "data": list(message.data)}
    return encode_frame({"message": {tag: body}})


_PRODUCER_TAGS: dict[type, str] = {
    CreateTopic: "CREATETOPIC",
    DeleteTopic: "DELETETOPIC",
    MessageTopic: "MESSAGETOPIC",
}

_PRODUCER_DECODERS: dict[str, Callable[[dict], ProducerRequest]] = {
    "CREATETOPIC": lambda b: CreateTopic(_string(b, "topic_name"), _i32(b, "partitions")),
    "DELETETOPIC": lambda b: DeleteTopic(_string(b, "topic_name")),
    "MESSAGETOPIC": lambda b: MessageTopic(
        _optional_string(b, "key"),
        _string(b, "topic_name"),
        _byte_list(_required(b, "data"), "data"),
    ),
}


def encode_producer_message(message: ProducerRequest) -> bytes:
    """Encode a producer request as a frame."""
    return _encode_request(message, _PRODUCER_TAGS)


def decode_producer_message(frame: bytes) -> ProducerRequest:
    """Decode a producer request frame."""
    tag, body = _tagged(frame)
    try:
        decoder = _PRODUCER_DECODERS[tag]
    except KeyError:
        raise ProtocolError(f"unknown producer message {tag!r}") from None
    return decoder(body)


# --- consumer requests ----------------------------------------------------------


_CONSUMER_TAGS: dict[type, str] = {
    JoinConsumer: "JOINCONSUMER",
    LeaveConsumer: "LEAVECONSUMER",
    GetOffsetMessage: "GETOFFSETMESSAGE",
    CommitOffset: "COMMITOFFSET",
}

_CONSUMER_DECODERS: dict[str, Callable[[dict], ConsumerRequest]] = {
    "JOINCONSUMER": lambda b: JoinConsumer(_string(b, "topic_name")),
    "LEAVECONSUMER": lambda b: LeaveConsumer(_string(b, "topic_name")),
    "GETOFFSETMESSAGE": lambda b: GetOffsetMessage(
        _string(b, "topic_name"), _i32(b, "partition"), _i32(b, "offset")
    ),
    "COMMITOFFSET": lambda b: CommitOffset(
        _string(b, "topic_name"), _i32(b, "partition"), _i32(b, "offset")
    ),
}


def encode_consumer_message(message: ConsumerRequest) -> bytes:
    """Encode a consumer request as a frame."""
    return _encode_request(message, _CONSUMER_TAGS)


def decode_consumer_message(frame: bytes) -> ConsumerRequest:
    """Decode a consumer request frame."""
    tag, body = _tagged(frame)
    try:
        decoder = _CONSUMER_DECODERS[tag]
    except KeyError:
        raise ProtocolError(f"unknown consumer message {tag!r}") from None
    return decoder(body)


# --- replies ----------------------------------------------------------------------


def success_frame() -> bytes:
    """Reply frame for a request that succeeded."""
    return encode_frame({})


def failure_frame() -> bytes:
    """Reply frame for a request that failed."""
    return encode_frame({})


def offset_frame(data: bytes) -> bytes:
    """Reply frame carrying a stored message."""
    return encode_frame({"message": list(data)})


def decode_success(frame: bytes) -> dict:
    """Decode a success reply, returning its (empty) JSON object."""
    return _object(_load(frame), "reply")


def decode_offset_reply(frame: bytes) -> bytes:
    """Decode a reply carrying a stored message and return its bytes."""
    body = _object(_load(frame), "reply")
    return _byte_list(_required(body, "message"), "message")