"""Upstream event schemas.

``RawEvent`` is the flattened form of one Doma poll event. Its ``payload``
is a closed union over the six known event types, chosen by the ``type``
tag through ``PAYLOAD_TYPES``. Tags outside the union parse into
``UnknownPayload`` so newer upstream event types never break ingestion.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .enums import EventType

# CAIP-2 separator, e.g. "eip155:97476"
NETWORK_ID_SEPARATOR = ":"


def extract_chain_id(network_id: str | None) -> str | None:
    """Return the chain reference of a compound network id.

    ``"eip155:1"`` -> ``"1"``. A missing id or a missing second segment
    yields ``None``.
    """
    if not network_id:
        return None
    parts = network_id.split(NETWORK_ID_SEPARATOR)
    if len(parts) < 2 or not parts[1]:
        return None
    return parts[1]


def _stringify(value: Any) -> Any:
    # Upstream sends some numeric identifiers as JSON numbers.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


# ===========================================================================
# Payload variants
# ===========================================================================

class EventPayload(BaseModel):
    """Fields shared by every ``eventData`` object."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    network_id: str | None = None
    finalized: bool = False
    tx_hash: str | None = None
    block_number: str | None = None
    log_index: int | None = None
    token_address: str | None = None
    token_id: str | None = None
    correlation_id: str | None = None

    @field_validator("block_number", "token_id", mode="before")
    @classmethod
    def _coerce_numeric_ids(cls, v: Any) -> Any:
        return _stringify(v)

    def to_json(self) -> dict[str, Any]:
        """Camel-cased JSON object as stored in ``event_data``."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NameTokenMintedPayload(EventPayload):
    type: EventType = EventType.NAME_TOKEN_MINTED
    owner: str | None = None
    name: str | None = None
    expires_at: datetime | None = None


class NameTokenTransferredPayload(EventPayload):
    type: EventType = EventType.NAME_TOKEN_TRANSFERRED
    from_address: str | None = Field(default=None, alias="from")
    to_address: str | None = Field(default=None, alias="to")


class NameTokenRenewedPayload(EventPayload):
    type: EventType = EventType.NAME_TOKEN_RENEWED
    expires_at: datetime | None = None


class NameTokenBurnedPayload(EventPayload):
    type: EventType = EventType.NAME_TOKEN_BURNED
    owner: str | None = None


class LockStatusChangedPayload(EventPayload):
    type: EventType = EventType.LOCK_STATUS_CHANGED
    is_transfer_locked: bool | None = None


class MetadataUpdatedPayload(EventPayload):
    type: EventType = EventType.METADATA_UPDATED
    name: str | None = None


class UnknownPayload(EventPayload):
    """Fallback for type tags this version does not know. Keeps all fields."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )


PAYLOAD_TYPES: dict[EventType, type[EventPayload]] = {
    EventType.NAME_TOKEN_MINTED: NameTokenMintedPayload,
    EventType.NAME_TOKEN_TRANSFERRED: NameTokenTransferredPayload,
    EventType.NAME_TOKEN_RENEWED: NameTokenRenewedPayload,
    EventType.NAME_TOKEN_BURNED: NameTokenBurnedPayload,
    EventType.LOCK_STATUS_CHANGED: LockStatusChangedPayload,
    EventType.METADATA_UPDATED: MetadataUpdatedPayload,
}


def parse_payload(event_type: str, data: dict[str, Any]) -> EventPayload:
    """Build the payload variant for *event_type* from a raw ``eventData``."""
    known = EventType.parse(event_type)
    cls = PAYLOAD_TYPES[known] if known is not None else UnknownPayload
    return cls.model_validate({**data, "type": event_type})


# ===========================================================================
# RawEvent
# ===========================================================================

class RawEvent(BaseModel):
    """One event as delivered by ``GET /v1/poll``."""

    id: int
    unique_id: str
    type: str
    name: str | None = None
    token_id: str | None = None
    network_id: str | None = None
    finalized: bool = False
    tx_hash: str | None = None
    block_number: str | None = None
    log_index: int | None = None
    correlation_id: str | None = None
    relay_id: str | None = None
    payload: SerializeAsAny[EventPayload]

    @field_validator("token_id", "block_number", mode="before")
    @classmethod
    def _coerce_numeric_ids(cls, v: Any) -> Any:
        return _stringify(v)

    @field_validator("payload", mode="before")
    @classmethod
    def _select_variant(cls, v: Any, info: Any) -> Any:
        if isinstance(v, dict):
            return parse_payload(info.data.get("type", ""), v)
        return v

    @classmethod
    def from_api(cls, obj: dict[str, Any]) -> RawEvent:
        """Flatten an upstream event object.

        Raises ``KeyError`` when ``id`` or ``uniqueId`` is missing and
        ``pydantic.ValidationError`` on malformed values.
        """
        data = obj.get("eventData") or {}
        event_type = obj.get("type") or data.get("type") or ""
        return cls(
            id=obj["id"],
            unique_id=obj["uniqueId"],
            type=event_type,
            name=obj.get("name") or data.get("name"),
            token_id=obj.get("tokenId") or data.get("tokenId"),
            network_id=data.get("networkId"),
            finalized=bool(data.get("finalized", False)),
            tx_hash=data.get("txHash"),
            block_number=data.get("blockNumber"),
            log_index=data.get("logIndex"),
            correlation_id=data.get("correlationId"),
            relay_id=obj.get("relayId"),
            payload=parse_payload(event_type, data),
        )

    @property
    def event_type(self) -> EventType | None:
        """The known event type, or ``None`` for unrecognized tags."""
        return EventType.parse(self.type)

    @property
    def chain_id(self) -> str | None:
        return extract_chain_id(self.network_id)


class PollResponse(BaseModel):
    """Body of ``GET /v1/poll``."""

    events: list[RawEvent] = Field(default_factory=list)
    last_id: int = 0
    has_more_events: bool = False

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> PollResponse:
        events = [RawEvent.from_api(e) for e in body.get("events") or []]
        events.sort(key=lambda e: e.id)
        return cls(
            events=events,
            last_id=int(body.get("lastId") or 0),
            has_more_events=bool(body.get("hasMoreEvents", False)),
        )
