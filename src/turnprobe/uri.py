"""Parsing of turn:, turns: and stun: server URIs."""

import re
from dataclasses import dataclass

from turnprobe.errors import InvalidServerUri

SCHEMES = ("turn", "turns", "stun")
DEFAULT_PORTS = {"turn": 3478, "turns": 5349, "stun": 3478}

# scheme:host[:port][?transport=udp|tcp]; IPv6 hosts go in brackets
_URI_RE = re.compile(
    r"^(?P<scheme>[a-z]+):"
    r"(?P<host>\[[0-9a-fA-F:.]+\]|[^:?\[\]/]+)"
    r"(?::(?P<port>\d+))?"
    r"(?:\?transport=(?P<transport>udp|tcp))?$"
)


@dataclass(frozen=True)
class ServerUri:
    """A parsed ICE server URI. ``raw`` is kept verbatim for reports."""

    raw: str
    scheme: str
    host: str
    port: int
    transport: str | None = None

    @property
    def is_turn(self) -> bool:
        return self.scheme in ("turn", "turns")

    @property
    def is_turn_udp(self) -> bool:
        """TURN over UDP: the only class where relay vs srflx is meaningful."""
        return self.scheme == "turn" and "?transport=tcp" not in self.raw

    @property
    def stun_companion(self) -> str:
        """The same host and port as a plain STUN URI."""
        return f"stun:{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.raw


def parse_server_uri(uri: str) -> ServerUri:
    """Parse a server URI.

    Args:
        uri: URI like "turn:1.2.3.4:443?transport=tcp".

    Returns:
        Parsed ServerUri.

    Raises:
        InvalidServerUri: If the scheme is unknown or the URI is malformed.
    """
    match = _URI_RE.match(uri.strip())
    if not match:
        raise InvalidServerUri(f"Malformed server URI: {uri!r}")

    scheme = match.group("scheme")
    if scheme not in SCHEMES:
        raise InvalidServerUri(f"Unsupported scheme {scheme!r} in {uri!r}")

    transport = match.group("transport")
    if scheme == "stun" and transport:
        raise InvalidServerUri(f"stun: URIs take no transport parameter: {uri!r}")

    port_str = match.group("port")
    port = int(port_str) if port_str else DEFAULT_PORTS[scheme]
    if not 0 < port < 65536:
        raise InvalidServerUri(f"Port out of range in {uri!r}")

    return ServerUri(
        raw=uri,
        scheme=scheme,
        host=match.group("host"),
        port=port,
        transport=transport,
    )


def parse_server_list(uris: list[str]) -> list[ServerUri]:
    """Parse every URI up front so a typo fails before any probing."""
    return [parse_server_uri(uri) for uri in uris]
