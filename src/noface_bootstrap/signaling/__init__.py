"""Signaling layer — channel bookkeeping and handshake relay."""

from noface_bootstrap.signaling.channel import ChannelState, SignalingChannel
from noface_bootstrap.signaling.directory import ConnectionDirectory
from noface_bootstrap.signaling.relay import SignalingRelay

__all__ = ["ChannelState", "ConnectionDirectory", "SignalingChannel", "SignalingRelay"]
