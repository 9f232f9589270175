"""Error kinds raised by the registry and the signaling relay."""

from __future__ import annotations


class BootstrapError(Exception):
    """Base class for all bootstrap server errors."""


class ValidationError(BootstrapError):
    """Registration input violated one or more constraints.

    Carries every violation found, not just the first one.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class PeerNotFoundError(BootstrapError):
    """No record exists for the requested peer id."""

    def __init__(self, peer_id: str) -> None:
        self.peer_id = peer_id
        super().__init__(f"peer not found: {peer_id}")


class DeliveryFailure(BootstrapError):
    """A signaling message could not be handed to its target channel.

    Only ever logged by the relay; the sender gets no feedback.
    """

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"cannot deliver to {target}: {reason}")


class MalformedMessageError(BootstrapError):
    """A signaling frame is not valid JSON or matches no known message type."""
