"""
Signaling envelopes exchanged between clients and the relay.

Every websocket text message carries exactly one JSON object::

    {"type": "offer", "targetId": "...", "offer": {...}, "files": [...]}

``targetId`` is set by the sending client and consumed by the relay;
``senderId`` is stamped by the relay on the forwarded copy and is never taken
from the client.
"""

from collections.abc import (
    Iterable,
    Mapping,
)
from dataclasses import (
    dataclass,
    field,
    replace,
)
from enum import Enum
import json
from typing import (
    Any,
)

from .exceptions import (
    MalformedEnvelopeError,
)

TARGET_ID_FIELD = "targetId"
SENDER_ID_FIELD = "senderId"
TYPE_FIELD = "type"

_ENVELOPE_FIELDS = frozenset({TYPE_FIELD, TARGET_ID_FIELD, SENDER_ID_FIELD})


class MessageType(str, Enum):
    WELCOME = "welcome"
    UPDATE_PEERS = "updatePeers"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"


# Types a client may ask the relay to forward
ROUTABLE_TYPES = frozenset(
    {MessageType.OFFER, MessageType.ANSWER, MessageType.CANDIDATE}
)

REQUIRED_FIELDS: dict[MessageType, tuple[str, ...]] = {
    MessageType.WELCOME: ("id", "deviceName"),
    MessageType.UPDATE_PEERS: ("peers",),
    MessageType.OFFER: ("offer", "files"),
    MessageType.ANSWER: ("answer",),
    MessageType.CANDIDATE: ("candidate",),
}


@dataclass(frozen=True)
class SignalingEnvelope:
    type: MessageType
    payload: dict[str, Any] = field(default_factory=dict)
    target_id: str | None = None
    sender_id: str | None = None

    def forwarded(self, sender_id: str) -> "SignalingEnvelope":
        """Copy for delivery: target stripped, sender stamped by the relay."""
        return replace(self, target_id=None, sender_id=sender_id)

    def to_wire(self) -> str:
        obj: dict[str, Any] = {TYPE_FIELD: self.type.value}
        if self.target_id is not None:
            obj[TARGET_ID_FIELD] = self.target_id
        obj.update(self.payload)
        if self.sender_id is not None:
            obj[SENDER_ID_FIELD] = self.sender_id
        return json.dumps(obj, separators=(",", ":"))


def _decode_object(raw: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEnvelopeError(f"Signaling message is not valid JSON: {e}") from e
    except RecursionError as e:
        raise MalformedEnvelopeError("Signaling message is nested too deeply") from e
    if not isinstance(data, dict):
        raise MalformedEnvelopeError(
            f"Signaling message must be a JSON object, got {type(data).__name__}"
        )
    return data


def _message_type(data: Mapping[str, Any]) -> MessageType:
    raw_type = data.get(TYPE_FIELD)
    try:
        return MessageType(raw_type)
    except ValueError as e:
        raise MalformedEnvelopeError(f"Unknown message type: {raw_type!r}") from e


def _check_required(msg_type: MessageType, data: Mapping[str, Any]) -> None:
    missing = [name for name in REQUIRED_FIELDS[msg_type] if name not in data]
    if missing:
        raise MalformedEnvelopeError(
            f"{msg_type.value} message is missing field(s): {', '.join(missing)}"
        )


def _payload(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in _ENVELOPE_FIELDS}


def parse_client_envelope(raw: str | bytes) -> SignalingEnvelope:
    """
    Parse a message a client sent to the relay.

    Any ``senderId`` the client supplied is discarded.

    :raises MalformedEnvelopeError: on invalid JSON, an unknown or
        non-routable type, a missing ``targetId`` or a missing payload field
    """
    data = _decode_object(raw)
    msg_type = _message_type(data)
    if msg_type not in ROUTABLE_TYPES:
        raise MalformedEnvelopeError(
            f"Clients may not send {msg_type.value} messages"
        )
    target_id = data.get(TARGET_ID_FIELD)
    if not isinstance(target_id, str) or not target_id:
        raise MalformedEnvelopeError(f"{msg_type.value} message has no targetId")
    _check_required(msg_type, data)
    return SignalingEnvelope(type=msg_type, payload=_payload(data), target_id=target_id)


def parse_relay_envelope(raw: str | bytes) -> SignalingEnvelope:
    """
    Parse a message the relay delivered to a client.

    :raises MalformedEnvelopeError: on invalid JSON, an unknown type, a
        forwarded message without ``senderId`` or a missing payload field
    """
    data = _decode_object(raw)
    msg_type = _message_type(data)
    sender_id = data.get(SENDER_ID_FIELD)
    if msg_type in ROUTABLE_TYPES and (not isinstance(sender_id, str) or not sender_id):
        raise MalformedEnvelopeError(f"{msg_type.value} message has no senderId")
    _check_required(msg_type, data)
    return SignalingEnvelope(
        type=msg_type,
        payload=_payload(data),
        sender_id=sender_id if msg_type in ROUTABLE_TYPES else None,
    )


def welcome_envelope(session_id: str, device_name: str) -> SignalingEnvelope:
    return SignalingEnvelope(
        type=MessageType.WELCOME,
        payload={"id": session_id, "deviceName": device_name},
    )


def update_peers_envelope(peers: Iterable[Mapping[str, Any]]) -> SignalingEnvelope:
    return SignalingEnvelope(
        type=MessageType.UPDATE_PEERS,
        payload={"peers": [dict(peer) for peer in peers]},
    )
