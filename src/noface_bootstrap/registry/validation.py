"""Registration input validation.

Every constraint is checked and every violation reported, so a client
fixing a bad request sees the whole list at once instead of one error
per round trip.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

MIN_PEER_ID_LENGTH = 10
MIN_PORT = 1
MAX_PORT = 65535

_IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


@dataclass
class Registration:
    """Normalized registration input, ready to be stored."""

    peer_id: str
    ip: str
    port: int
    name: str | None = None
    version: str | None = None
    capabilities: frozenset[str] = field(default_factory=frozenset)


def is_valid_ip(ip: str) -> bool:
    """Dotted-quad IPv4, or anything containing ``:`` (loose IPv6)."""
    if ":" in ip:
        return True
    match = _IPV4_RE.match(ip)
    if match is None:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


def parse_port(port: Any) -> int | None:
    """Parse an int, integral float or integer string; ``None`` otherwise."""
    if isinstance(port, bool):
        return None
    if isinstance(port, int):
        return port
    if isinstance(port, float):
        return int(port) if port.is_integer() else None
    if isinstance(port, str):
        try:
            return int(port.strip())
        except ValueError:
            return None
    return None


def validate_registration(
    peer_id: Any,
    ip: Any,
    port: Any,
    name: Any = None,
    capabilities: Any = None,
    version: Any = None,
) -> tuple[Registration | None, list[str]]:
    """Check all registration fields.

    Returns:
        ``(registration, [])`` when valid, ``(None, errors)`` otherwise.
    """
    errors: list[str] = []

    if peer_id is None or peer_id == "":
        errors.append("id is required")
    elif not isinstance(peer_id, str):
        errors.append("id must be a string")
    elif len(peer_id) < MIN_PEER_ID_LENGTH:
        errors.append(f"id must be at least {MIN_PEER_ID_LENGTH} characters")

    if not ip or not isinstance(ip, str):
        errors.append("ip is required")
    elif not is_valid_ip(ip):
        errors.append("ip must be a valid IPv4 or IPv6 address")

    port_num = None
    if port is None or port == "":
        errors.append("port is required")
    else:
        port_num = parse_port(port)
        if port_num is None:
            errors.append("port must be a number")
        elif not MIN_PORT <= port_num <= MAX_PORT:
            errors.append(f"port must be between {MIN_PORT} and {MAX_PORT}")

    if name is not None and not isinstance(name, str):
        errors.append("name must be a string")
    if version is not None and not isinstance(version, str):
        errors.append("version must be a string")

    caps: frozenset[str] = frozenset()
    if capabilities is not None:
        if not isinstance(capabilities, list) or not all(
            isinstance(c, str) for c in capabilities
        ):
            errors.append("capabilities must be a list of strings")
        else:
            caps = frozenset(capabilities)

    if errors:
        return None, errors

    return Registration(
        peer_id=peer_id,
        ip=ip,
        port=port_num,
        name=name or None,
        version=version,
        capabilities=caps,
    ), []
