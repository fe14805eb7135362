"""Session driver: one ICE gathering session per server."""

import asyncio
import logging
import time

from turnprobe.config import DEFAULT_CANDIDATE_POOL_SIZE, DEFAULT_PROBE_TIMEOUT
from turnprobe.engine import AiortcEngine
from turnprobe.errors import GatheringTimeout, OfferCreationFailed
from turnprobe.protocols import (
    Candidate,
    CandidateGatheringError,
    Credential,
    EngineHandlers,
    IceServerEntry,
    NegotiationConfig,
    NegotiationEngine,
    NegotiationSession,
    SessionState,
)
from turnprobe.uri import ServerUri

logger = logging.getLogger(__name__)


class ProbeSession:
    """Per-session context: the server, its candidates and its state.

    Engine callbacks are bound to this object, so events always land in the
    session they belong to. Every terminal transition sets a single event
    that ``wait`` suspends on.
    """

    def __init__(self, server: ServerUri):
        self.server = server
        self.candidates: list[Candidate] = []
        self.errors: list[CandidateGatheringError] = []
        self._state = SessionState.GATHERING
        self._done = asyncio.Event()
        self._started = time.perf_counter()
        self._finished: float | None = None

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def elapsed(self) -> float:
        """Seconds from session start to finalization (or now)."""
        end = self._finished if self._finished is not None else time.perf_counter()
        return end - self._started

    @property
    def handlers(self) -> EngineHandlers:
        return EngineHandlers(
            on_candidate=self._on_candidate,
            on_gathering_state=self._on_gathering_state,
            on_candidate_error=self._on_candidate_error,
        )

    def _on_candidate(self, candidate: Candidate | None) -> None:
        if self._state.is_terminal:
            logger.debug(f"{self.server}: dropping candidate after finalization")
            return
        if candidate is None or candidate.is_empty:
            # End of candidate generation for this round
            return
        self.candidates.append(candidate)
        logger.debug(f"{self.server}: candidate {candidate.type} {candidate.candidate}")

    def _on_gathering_state(self, state: str) -> None:
        logger.debug(f"{self.server}: ICE gathering state {state}")
        if state == "complete":
            self.finalize(SessionState.COMPLETE)

    def _on_candidate_error(self, error: CandidateGatheringError) -> None:
        self.errors.append(error)

    def finalize(self, state: SessionState) -> bool:
        """Move to a terminal state. Only the first transition counts.

        Returns:
            True if this call finalized the session.
        """
        if not state.is_terminal:
            raise ValueError(f"{state} is not a terminal state")
        if self._state.is_terminal:
            return False
        self._state = state
        self._finished = time.perf_counter()
        self._done.set()
        return True

    async def wait(self, timeout: float) -> SessionState:
        """Suspend until the session reaches a terminal state.

        Raises:
            GatheringTimeout: If no terminal state is reached in time.
        """
        try:
            async with asyncio.timeout(max(timeout, 0)):
                await self._done.wait()
        except TimeoutError:
            raise GatheringTimeout(
                f"ICE gathering for {self.server} did not complete in {timeout}s"
            )
        return self._state


class SessionDriver:
    """Drives one negotiation session per server to a terminal state."""

    def __init__(
        self,
        engine: NegotiationEngine | None = None,
        candidate_pool_size: int = DEFAULT_CANDIDATE_POOL_SIZE,
    ):
        """Initialize session driver.

        Args:
            engine: Negotiation engine (defaults to aiortc).
            candidate_pool_size: Pre-gathering pool size handed to the engine.
        """
        self._engine = engine or AiortcEngine()
        self.candidate_pool_size = candidate_pool_size

    def build_config(self, server: ServerUri, credential: Credential) -> NegotiationConfig:
        """Configuration with exactly one ICE server entry."""
        return NegotiationConfig(
            ice_servers=[
                IceServerEntry(
                    urls=[server.raw],
                    username=credential.username,
                    credential=credential.password,
                )
            ],
            ice_transport_policy="all",
            ice_candidate_pool_size=self.candidate_pool_size,
        )

    async def run_session(
        self,
        server: ServerUri,
        credential: Credential,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> ProbeSession:
        """Run a session to completion, timeout or failure.

        Never raises for per-server problems; the returned session is always
        terminal and its engine session closed.
        """
        session = ProbeSession(server)
        config = self.build_config(server, credential)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        engine_session: NegotiationSession | None = None

        logger.info(f"Probing {server} (timeout {timeout}s)")
        try:
            async with asyncio.timeout_at(deadline):
                engine_session = await self._engine.start(config, session.handlers)
            await session.wait(deadline - loop.time())
        except OfferCreationFailed as e:
            logger.warning(f"{server}: {e}")
            session.finalize(SessionState.FAILED)
        except (GatheringTimeout, TimeoutError):
            logger.warning(f"{server}: ICE gathering timed out after {timeout}s")
            session.finalize(SessionState.TIMED_OUT)
        except Exception:
            logger.exception(f"{server}: negotiation engine failed")
            session.finalize(SessionState.FAILED)
        finally:
            if engine_session is not None:
                try:
                    await engine_session.close()
                except Exception:
                    logger.exception(f"{server}: error closing negotiation session")

        logger.info(
            f"{server}: {session.state.value} with {len(session.candidates)} candidates "
            f"in {session.elapsed:.3f}s"
        )
        return session

    async def probe(
        self,
        server: ServerUri,
        credential: Credential,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> list[Candidate]:
        """Probe one server and return its finalized candidate set."""
        session = await self.run_session(server, credential, timeout)
        return list(session.candidates)
