"""Signaling wire messages.

Each text frame carries one JSON object ``{"type": ..., ...}``. Frames
are parsed into one of the models below before any routing happens;
anything that doesn't match a known variant is rejected.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from noface_bootstrap.errors import MalformedMessageError


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterMessage(_WireModel):
    """Binds the sending channel to a peer identity."""

    type: Literal["register"]
    peer_id: str = Field(alias="peerId", min_length=1)


class PingMessage(_WireModel):
    type: Literal["ping"]


class PongMessage(_WireModel):
    type: Literal["pong"]


class RelayMessage(_WireModel):
    """Base for messages forwarded from one peer to another."""

    payload_field: ClassVar[str] = "payload"

    sender: str = Field(alias="from", min_length=1)
    target: str = Field(alias="to", min_length=1)

    @property
    def payload(self) -> Any:
        return getattr(self, self.payload_field)

    def to_forward(self) -> dict[str, Any]:
        """Frame delivered to the target; the payload is passed through untouched."""
        return {
            "type": self.type,
            "from": self.sender,
            self.payload_field: self.payload,
        }


class PeerOfferMessage(RelayMessage):
    payload_field: ClassVar[str] = "offer"

    type: Literal["peer_offer"]
    offer: Any


class PeerAnswerMessage(RelayMessage):
    payload_field: ClassVar[str] = "answer"

    type: Literal["peer_answer"]
    answer: Any


class IceCandidateMessage(RelayMessage):
    payload_field: ClassVar[str] = "candidate"

    type: Literal["ice_candidate"]
    candidate: Any


SignalingMessage = Annotated[
    Union[
        RegisterMessage,
        PeerOfferMessage,
        PeerAnswerMessage,
        IceCandidateMessage,
        PingMessage,
        PongMessage,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[SignalingMessage] = TypeAdapter(SignalingMessage)


def parse_message(raw: str | bytes) -> SignalingMessage:
    """Parse one frame into its message variant.

    Raises:
        MalformedMessageError: bad JSON, unknown ``type`` or missing fields.
    """
    try:
        return _adapter.validate_json(raw)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'frame'}: {err['msg']}"
            for err in e.errors()
        )
        raise MalformedMessageError(details) from e
