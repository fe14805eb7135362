"""Protocols, enums and data classes shared across turnprobe."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol


class CandidateType(Enum):
    """ICE candidate types reported by the negotiation engine."""

    HOST = "host"
    SRFLX = "srflx"
    RELAY = "relay"
    PRFLX = "prflx"


class SessionState(Enum):
    """State of one probing session.

    GATHERING is the only non-terminal state. The first transition out of it
    wins; later transitions are ignored.
    """

    GATHERING = "gathering"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionState.GATHERING


class VerdictText(str, Enum):
    """The four fixed verdict messages."""

    CONNECTION_COMPLETE = "Connection Complete"
    AUTHENTICATION_FAILED = "Authentication failed?"
    NOT_REACHABLE = "Not reachable?"
    CONNECTION_FAILED = "Connection failed."


# ============================================================================
# Data Classes
# ============================================================================


@dataclass(frozen=True)
class Credential:
    """TURN long-term credential pair."""

    username: str
    password: str

    @classmethod
    def anonymous(cls) -> "Credential":
        """Empty pair, enough for STUN-only servers."""
        return cls(username="", password="")


@dataclass(frozen=True)
class Candidate:
    """One discovered ICE candidate.

    Only ``type`` drives classification; the remaining fields feed the
    verbose report.
    """

    type: str
    foundation: str = ""
    component: int = 1
    protocol: str = "udp"
    priority: int = 0
    address: str = ""
    port: int = 0
    related_address: str | None = None
    related_port: int | None = None
    candidate: str = ""  # raw "candidate:..." attribute value
    elapsed: float = 0.0  # seconds since gathering began

    @property
    def is_empty(self) -> bool:
        """True for the empty payload that marks end-of-candidates."""
        return not self.candidate


@dataclass(frozen=True)
class CandidateGatheringError:
    """Error reported by the engine for one ICE server."""

    url: str
    error_code: int
    error_text: str


@dataclass(frozen=True)
class Verdict:
    """Classification of one server."""

    server: str
    text: VerdictText

    @property
    def message(self) -> str:
        return f"{self.server}: {self.text.value}"

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class IceServerEntry:
    """A single ICE server entry handed to the negotiation engine."""

    urls: list[str]
    username: str | None = None
    credential: str | None = None


@dataclass(frozen=True)
class NegotiationConfig:
    """Configuration for one negotiation session."""

    ice_servers: list[IceServerEntry]
    ice_transport_policy: str = "all"
    ice_candidate_pool_size: int = 10


@dataclass
class ProbeResult:
    """Verdict plus the diagnostics of the session that produced it."""

    verdict: Verdict
    state: SessionState
    candidates: list[Candidate] = field(default_factory=list)
    errors: list[CandidateGatheringError] = field(default_factory=list)
    elapsed: float = 0.0


# ============================================================================
# Protocols
# ============================================================================


@dataclass
class EngineHandlers:
    """Callbacks a negotiation engine invokes for one session."""

    on_candidate: Callable[[Candidate | None], None]
    on_gathering_state: Callable[[str], None]
    on_candidate_error: Callable[[CandidateGatheringError], None]


class NegotiationSession(Protocol):
    """Handle to one running engine session."""

    async def close(self) -> None:
        """Tear the session down. Must be idempotent."""
        ...


class NegotiationEngine(Protocol):
    """ICE negotiation engine consumed by the session driver."""

    async def start(
        self, config: NegotiationConfig, handlers: EngineHandlers
    ) -> NegotiationSession:
        """Open a session and begin gathering.

        Raises OfferCreationFailed if no offer can be produced. Events may be
        delivered before and after this coroutine returns.
        """
        ...


class CredentialProvider(Protocol):
    """Source of the credential pair used for a probing run."""

    async def obtain_credential(self) -> Credential:
        """Returns the pair. Raises CredentialUnavailable on failure."""
        ...
