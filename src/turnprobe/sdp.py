"""ICE candidate extraction from SDP.

Candidate attribute lines look like:

    a=candidate:2 1 udp 1694498815 203.0.113.50 50000 typ srflx raddr 192.168.1.100 rport 50000
"""

from aiortc.sdp import candidate_from_sdp

from turnprobe.protocols import Candidate

CANDIDATE_PREFIX = "a=candidate:"


def parse_candidate(value: str, elapsed: float = 0.0) -> Candidate | None:
    """Parse one candidate attribute value.

    Args:
        value: Attribute value with or without the "a=" / "candidate:" prefix.
        elapsed: Seconds since gathering began, recorded on the candidate.

    Returns:
        Parsed Candidate, or None for an empty value (end-of-candidates).

    Raises:
        ValueError: If the value is not a well-formed candidate.
    """
    value = value.strip()
    if value.startswith("a="):
        value = value[2:]
    if value.startswith("candidate:"):
        value = value[len("candidate:"):]
    if not value:
        return None

    try:
        ice = candidate_from_sdp(value)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"Malformed ICE candidate: {value!r}") from e

    return Candidate(
        type=ice.type,
        foundation=ice.foundation,
        component=ice.component,
        protocol=ice.protocol.lower(),
        priority=ice.priority,
        address=ice.ip,
        port=ice.port,
        related_address=ice.relatedAddress,
        related_port=ice.relatedPort,
        candidate=f"candidate:{value}",
        elapsed=elapsed,
    )


def extract_candidate_lines(sdp: str) -> list[str]:
    """Extract all ICE candidate lines from SDP.

    Args:
        sdp: The SDP string

    Returns:
        List of candidate lines
    """
    return [
        line.strip()
        for line in sdp.splitlines()
        if line.startswith(CANDIDATE_PREFIX)
    ]


def extract_candidates(sdp: str, elapsed: float = 0.0) -> list[Candidate]:
    """Parse every candidate in an SDP blob, skipping duplicates.

    With BUNDLE the same candidate can appear under several m= sections.
    """
    seen: set[str] = set()
    candidates = []
    for line in extract_candidate_lines(sdp):
        candidate = parse_candidate(line, elapsed=elapsed)
        if candidate is None or candidate.candidate in seen:
            continue
        seen.add(candidate.candidate)
        candidates.append(candidate)
    return candidates


def format_priority(priority: int) -> str:
    """Split an RFC 5245 PRIORITY into its constituent parts.

    type preference | local preference | (256 - component ID)

    Example: 126 | 32252 | 255 (126 is host preference, 255 is component ID 1)
    """
    return " | ".join(
        str(part)
        for part in (priority >> 24, (priority >> 8) & 0xFFFF, priority & 0xFF)
    )
