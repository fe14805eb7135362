"""Verdicts from the categories of gathered candidates.

This is inference, not protocol-level confirmation. It cannot tell a TURN
server that is down from one whose port is firewalled, which is why two of
the verdicts end in a question mark.
"""

from typing import Iterable

from turnprobe.protocols import Candidate, CandidateType, Verdict, VerdictText
from turnprobe.uri import ServerUri, parse_server_uri


def classify(server: ServerUri | str, candidates: Iterable[Candidate]) -> Verdict:
    """Classify one server from its finished candidate set.

    Args:
        server: Server URI the candidates were gathered against.
        candidates: Candidates gathered for that server only.

    Returns:
        Verdict for the server.
    """
    if isinstance(server, str):
        server = parse_server_uri(server)
    types = {candidate.type for candidate in candidates}

    # A TURN/UDP server should give a relay candidate. A srflx candidate
    # without one means the server answered the binding request but refused
    # the allocation, most likely bad credentials. Neither means the server
    # is down or access to its port is blocked.
    if server.is_turn_udp:
        if CandidateType.RELAY.value in types:
            text = VerdictText.CONNECTION_COMPLETE
        elif CandidateType.SRFLX.value in types:
            text = VerdictText.AUTHENTICATION_FAILED
        else:
            text = VerdictText.NOT_REACHABLE
    # TURN/TCP, TURNS and STUN only tell us something through srflx
    elif CandidateType.SRFLX.value not in types:
        text = VerdictText.CONNECTION_FAILED
    else:
        text = VerdictText.CONNECTION_COMPLETE

    return Verdict(server=server.raw, text=text)
