"""Base exceptions for turnprobe."""


class TurnProbeError(Exception):
    """Base exception for all turnprobe errors."""

    pass


class CredentialUnavailable(TurnProbeError):
    """Credential source unreachable or returned a non-success status."""

    pass


class OfferCreationFailed(TurnProbeError):
    """Negotiation engine could not produce a session offer."""

    pass


class GatheringTimeout(TurnProbeError):
    """ICE gathering did not complete within the allotted window."""

    pass


class InvalidServerUri(TurnProbeError):
    """Server URI is not a valid turn:, turns: or stun: URI."""

    pass
