"""WebSocket message protocol definitions.

Every frame on the wire is a JSON envelope ``{"type": str, "payload": object}``.
Inbound envelopes are parsed into ``ClientEnvelope``; the payloads of the few
types the server acts on are validated with dedicated Pydantic models. Handshake
payloads (offer/answer/candidate) stay opaque dictionaries.
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

WELCOME_MESSAGE = "Welcome to Vocaline! Please provide your username."
DEFAULT_DISPLAY_NAME = "Guest"


class ProtocolError(Exception):
    """Raised when an inbound frame is not a well-formed envelope."""

    pass


class ClientMessageType(str, Enum):
    """Client → Server envelope types."""

    JOIN = "join"
    CHANGE_PARTNER = "change_partner"
    DISCONNECT_FROM_MATCHMAKING = "disconnect_from_matchmaking"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    MUTE = "mute"


# Handshake envelopes relayed verbatim to the partner
HANDSHAKE_TYPES = frozenset(
    {ClientMessageType.OFFER, ClientMessageType.ANSWER, ClientMessageType.CANDIDATE}
)


class SessionStatus(str, Enum):
    """Values carried by ``status_update``."""

    CONNECTING = "connecting"
    WAITING_FOR_MATCH = "waiting_for_match"
    IN_CALL = "in-call"
    DISCONNECTED = "disconnected"


class ClientEnvelope(BaseModel):
    """Client → Server: raw envelope, payload not yet interpreted."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class JoinPayload(BaseModel):
    """Client → Server: request to enter matchmaking."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1, description="Display name shown to partners")


class MutePayload(BaseModel):
    """Client → Server: microphone mute state change."""

    is_muted: StrictBool = Field(..., alias="isMuted")


def parse_envelope(raw: str | bytes) -> ClientEnvelope:
    """Parse a raw inbound frame into an envelope.

    Args:
        raw: Frame received from the transport

    Returns:
        Parsed envelope

    Raises:
        ProtocolError: If the frame is binary, not JSON, not an object, has no
            string ``type`` or a non-object ``payload``
    """
    if not isinstance(raw, str):
        raise ProtocolError("Binary frames are not supported")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Envelope must be a JSON object")

    # Clients send {"type": "change_partner"} without a payload
    if data.get("payload") is None:
        data["payload"] = {}

    try:
        return ClientEnvelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid envelope: {e.error_count()} validation error(s)") from e


# === Server → Client payloads ===


class WelcomeMessage(BaseModel):
    """Sent once when a connection is registered."""

    type: Literal["welcome"] = "welcome"
    message: str = WELCOME_MESSAGE


class StatusUpdateMessage(BaseModel):
    """Client-facing matchmaking status."""

    type: Literal["status_update"] = "status_update"
    status: SessionStatus


class StatsUpdateMessage(BaseModel):
    """Aggregate server counts, broadcast to everyone."""

    type: Literal["stats_update"] = "stats_update"
    connected_users: int = Field(..., ge=0, serialization_alias="connectedUsers")
    waiting_users: int = Field(..., ge=0, serialization_alias="waitingUsers")
    active_conversations: int = Field(..., ge=0, serialization_alias="activeConversations")


class MatchFoundMessage(BaseModel):
    """Pairing notification; exactly one side of a pair initiates the call."""

    type: Literal["match_found"] = "match_found"
    partner_username: str = Field(..., serialization_alias="partnerUsername")
    initiate_call: bool = Field(..., serialization_alias="initiateCall")


class PartnerDisconnectedMessage(BaseModel):
    """The pairing was dissolved by the other side."""

    type: Literal["partner_disconnected"] = "partner_disconnected"
    message: str


class PartnerMuteStatusMessage(BaseModel):
    """Partner toggled their microphone."""

    type: Literal["partner_mute_status"] = "partner_mute_status"
    username: str
    is_muted: bool = Field(..., serialization_alias="isMuted")


class ErrorMessage(BaseModel):
    """Request rejected (protocol error or bad payload)."""

    type: Literal["error"] = "error"
    message: str


class InfoMessage(BaseModel):
    """Request ignored, informational only."""

    type: Literal["info"] = "info"
    message: str


ServerMessage = (
    WelcomeMessage
    | StatusUpdateMessage
    | StatsUpdateMessage
    | MatchFoundMessage
    | PartnerDisconnectedMessage
    | PartnerMuteStatusMessage
    | ErrorMessage
    | InfoMessage
)


def to_envelope(message: ServerMessage) -> dict[str, Any]:
    """Wrap a server message into the ``{type, payload}`` wire envelope."""
    payload = message.model_dump(mode="json", by_alias=True, exclude={"type"})
    return {"type": message.type, "payload": payload}


def relay_envelope(message_type: str, payload: dict[str, Any], sender_id: str) -> dict[str, Any]:
    """Build a relayed handshake envelope, stamping the sender id into the payload."""
    return {"type": message_type, "payload": {**payload, "from": sender_id}}
