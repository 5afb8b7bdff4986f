"""Flattens LiveKit webhook payloads into CanonicalEvent."""

import hashlib
from typing import Any, Optional

from app.schemas.events import CanonicalEvent, SipParticipant


def _get(obj: dict[str, Any], camel: str, snake: str) -> Any:
    value = obj.get(camel)
    return value if value is not None else obj.get(snake)


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _to_int(value: Any) -> Optional[int]:
    # protobuf int64 fields arrive as strings in JSON
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def derive_event_id(
    event: str,
    room_name: Optional[str],
    created_at: Optional[int],
    participant_identity: Optional[str],
) -> str:
    """Stable id for payloads delivered without one, so redeliveries still dedupe."""
    material = "|".join(
        [
            event,
            room_name or "",
            "" if created_at is None else str(created_at),
            participant_identity or "",
        ]
    )
    return "derived-" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


def _participant(raw: Any) -> Optional[SipParticipant]:
    if not isinstance(raw, dict):
        return None

    attributes = raw.get("attributes")
    return SipParticipant(
        participant_id=_non_empty_str(raw.get("sid")),
        identity=_non_empty_str(raw.get("identity")),
        kind=None if raw.get("kind") is None else str(raw["kind"]),
        attributes={
            str(k): str(v) for k, v in attributes.items() if v is not None
        } if isinstance(attributes, dict) else {},
    )


def normalize_livekit_event(payload: dict[str, Any]) -> CanonicalEvent:
    """Map a decoded LiveKit webhook into the canonical event shape."""
    event = _non_empty_str(payload.get("event")) or "unknown"
    created_at = _to_int(_get(payload, "createdAt", "created_at"))

    room = payload.get("room")
    room_name = _non_empty_str(room.get("name")) if isinstance(room, dict) else None

    participant = _participant(payload.get("participant"))

    event_id = _non_empty_str(payload.get("id"))
    event_id_derived = False
    if event_id is None:
        event_id = derive_event_id(
            event, room_name, created_at, participant.identity if participant else None
        )
        event_id_derived = True

    return CanonicalEvent(
        event_id=event_id,
        event_id_derived=event_id_derived,
        event=event,
        created_at=created_at,
        room_name=room_name,
        participant=participant,
    )
