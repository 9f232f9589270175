"""SignalingRelay — routes handshake messages between registered channels.

Per-channel lifecycle::

    CONNECTED --register{peerId}--> REGISTERED --close/error--> CLOSED

Delivery is at-most-once and best effort: if the target isn't connected
or its outbox is full, the message is logged as undeliverable and
dropped. Senders never get an acknowledgment either way.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from noface_bootstrap.errors import DeliveryFailure, MalformedMessageError
from noface_bootstrap.registry.store import PeerRegistry
from noface_bootstrap.signaling.channel import ChannelState, SignalingChannel
from noface_bootstrap.signaling.directory import ConnectionDirectory
from noface_bootstrap.signaling.messages import (
    IceCandidateMessage,
    PeerAnswerMessage,
    PeerOfferMessage,
    PingMessage,
    PongMessage,
    RegisterMessage,
    RelayMessage,
    parse_message,
)

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Classifies inbound frames and answers or forwards them."""

    def __init__(
        self,
        registry: PeerRegistry,
        directory: ConnectionDirectory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.directory = directory
        self._clock = clock
        self.relayed = 0
        self.dropped = 0

    def dispatch(self, channel: SignalingChannel, raw: str | bytes) -> None:
        """Handle one inbound frame from *channel*."""
        if channel.state is ChannelState.CLOSED:
            logger.debug("Ignoring frame from closed %r", channel)
            return
        try:
            message = parse_message(raw)
        except MalformedMessageError as e:
            logger.warning("Dropping malformed frame from %r: %s", channel, e)
            return

        if isinstance(message, RegisterMessage):
            self.register(channel, message.peer_id)
        elif isinstance(message, PingMessage):
            channel.offer({"type": "pong", "timestamp": int(self._clock() * 1000)})
        elif isinstance(message, PongMessage):
            pass
        elif isinstance(message, RelayMessage):
            if channel.state is not ChannelState.REGISTERED:
                logger.warning(
                    "Dropping %s from unregistered %r", message.type, channel,
                )
                return
            self._relay(message)

    def register(self, channel: SignalingChannel, peer_id: str) -> None:
        """Bind *channel* to *peer_id* and push it the current peer list."""
        if channel.peer_id is not None and channel.peer_id != peer_id:
            self.directory.unbind(channel.peer_id, channel)

        previous = self.directory.bind(peer_id, channel)
        channel.peer_id = peer_id
        channel.state = ChannelState.REGISTERED
        if previous is not None:
            logger.warning(
                "Peer %s re-registered on %r, evicting %r", peer_id, channel, previous,
            )
            previous.evict()
        else:
            logger.info("Signaling channel registered: %s (%s)", peer_id, channel.remote)

        channel.offer({
            "type": "peer_list",
            "peerId": peer_id,
            "peers": [r.to_signaling_dict() for r in self.registry.snapshot()],
        })

    def disconnect(self, channel: SignalingChannel) -> None:
        """Forget *channel*; leaves a newer binding for the same id alone."""
        peer_id = channel.peer_id
        channel.state = ChannelState.CLOSED
        if peer_id is None:
            return
        if self.directory.unbind(peer_id, channel):
            logger.info("Signaling channel closed: %s", peer_id)
        else:
            logger.debug("Closed %r was no longer bound to %s", channel, peer_id)

    # ── Relay operations ─────────────────────────────────────────

    def relay_offer(self, sender: str, target: str, offer: Any) -> bool:
        return self._relay(PeerOfferMessage(type="peer_offer", sender=sender, target=target, offer=offer))

    def relay_answer(self, sender: str, target: str, answer: Any) -> bool:
        return self._relay(PeerAnswerMessage(type="peer_answer", sender=sender, target=target, answer=answer))

    def relay_ice_candidate(self, sender: str, target: str, candidate: Any) -> bool:
        return self._relay(
            IceCandidateMessage(type="ice_candidate", sender=sender, target=target, candidate=candidate)
        )

    def _relay(self, message: RelayMessage) -> bool:
        try:
            self._deliver(message.target, message.to_forward())
        except DeliveryFailure as e:
            self.dropped += 1
            logger.warning(
                "Delivery failure: %s from %s to %s dropped (%s)",
                message.type, message.sender, e.target, e.reason,
            )
            return False
        self.relayed += 1
        logger.debug("Relayed %s from %s to %s", message.type, message.sender, message.target)
        return True

    def _deliver(self, target: str, frame: dict[str, Any]) -> None:
        channel = self.directory.lookup(target)
        if channel is None:
            raise DeliveryFailure(target, "not connected")
        if not channel.writable:
            raise DeliveryFailure(target, "channel closed")
        if not channel.offer(frame):
            raise DeliveryFailure(target, "outbox full")
