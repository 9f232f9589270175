"""NoFace bootstrap server: peer discovery and signaling relay."""

__version__ = "1.0.0"
