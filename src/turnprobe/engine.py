"""ICE negotiation engine backed by aiortc.

aiortc gathers every candidate inside ``setLocalDescription`` and has no
trickle events, so the session replays the gathered candidates through the
engine handlers once gathering finishes, followed by an end-of-candidates
event and the ``complete`` gathering state.
"""

import asyncio
import logging
import time
from typing import Callable

from aioice.stun import TransactionFailed, TransactionTimeout
from aiortc import (
    RTCConfiguration,
    RTCIceGatherer,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_to_sdp

from turnprobe.errors import OfferCreationFailed
from turnprobe.protocols import (
    Candidate,
    CandidateGatheringError,
    EngineHandlers,
    IceServerEntry,
    NegotiationConfig,
)
from turnprobe.sdp import extract_candidates, parse_candidate
from turnprobe.uri import parse_server_uri

logger = logging.getLogger(__name__)

# Error code used by browsers when a server sent no STUN response at all
NO_RESPONSE_ERROR_CODE = 701


class ConnectionTimer:
    """Track and log gathering phases for debugging.

    Usage:
        timer = ConnectionTimer("turn:1.2.3.4:3478")
        timer.mark("offer_created")
        # ... do work ...
        timer.mark("gathering_complete")
        timer.log_summary()
    """

    def __init__(self, label: str = "session"):
        self._label = label
        self._start = time.perf_counter()
        self._marks: list[tuple[str, float]] = []

    @property
    def elapsed(self) -> float:
        """Seconds since the timer started."""
        return time.perf_counter() - self._start

    def mark(self, phase: str) -> float:
        """Record a timing mark and return elapsed ms since start."""
        elapsed_ms = self.elapsed * 1000
        self._marks.append((phase, elapsed_ms))
        return elapsed_ms

    def log_mark(self, phase: str) -> None:
        """Record and log a timing mark."""
        elapsed_ms = self.mark(phase)
        logger.debug(f"[TIMING] {self._label}: {phase} @ {elapsed_ms:.1f}ms")

    def log_summary(self) -> None:
        """Log a summary of all timing marks."""
        if not self._marks:
            return
        summary = " | ".join(f"{phase}={ms:.0f}ms" for phase, ms in self._marks)
        total = self._marks[-1][1]
        logger.info(f"[TIMING] {self._label} summary: {summary} (total={total:.0f}ms)")


def to_rtc_configuration(config: NegotiationConfig) -> RTCConfiguration:
    """Translate a NegotiationConfig into an aiortc configuration.

    A TURN-over-UDP entry also gets its STUN companion URL, since browsers
    send binding requests to TURN servers and the srflx candidate this
    produces is what tells a reachable server apart from a dead one.
    """
    if config.ice_transport_policy != "all":
        logger.warning(
            f"aiortc ignores iceTransportPolicy={config.ice_transport_policy!r}"
        )
    return RTCConfiguration(
        iceServers=[_to_rtc_ice_server(entry) for entry in config.ice_servers]
    )


def _to_rtc_ice_server(entry: IceServerEntry) -> RTCIceServer:
    return RTCIceServer(
        urls=_with_stun_companions(entry.urls),
        username=entry.username or None,
        credential=entry.credential or None,
    )


def _with_stun_companions(urls: list[str]) -> list[str]:
    expanded = []
    for url in urls:
        expanded.append(url)
        server = parse_server_uri(url)
        if server.is_turn_udp:
            expanded.append(server.stun_companion)
    return expanded


def _stun_urls(config: NegotiationConfig) -> list[str]:
    return [
        url
        for entry in config.ice_servers
        for url in _with_stun_companions(entry.urls)
        if url.startswith("stun:")
    ]


def describe_gathering_error(url: str, exc: BaseException) -> CandidateGatheringError:
    """Map an aioice gathering exception to a candidate error record."""
    if isinstance(exc, TransactionFailed):
        code, reason = exc.response.attributes.get(
            "ERROR-CODE", (NO_RESPONSE_ERROR_CODE, str(exc))
        )
        return CandidateGatheringError(url=url, error_code=code, error_text=reason)
    if isinstance(exc, TransactionTimeout):
        return CandidateGatheringError(
            url=url,
            error_code=NO_RESPONSE_ERROR_CODE,
            error_text="STUN transaction timed out",
        )
    return CandidateGatheringError(
        url=url,
        error_code=NO_RESPONSE_ERROR_CODE,
        error_text=str(exc) or exc.__class__.__name__,
    )


class AiortcSession:
    """One running gathering session on an RTCPeerConnection."""

    def __init__(
        self,
        config: NegotiationConfig,
        handlers: EngineHandlers,
        pc_factory: Callable[[RTCConfiguration], RTCPeerConnection],
        gatherer_factory: Callable[[list[RTCIceServer]], RTCIceGatherer],
    ):
        self._config = config
        self._handlers = handlers
        self._pc_factory = pc_factory
        self._gatherer_factory = gatherer_factory
        self._label = ",".join(url for entry in config.ice_servers for url in entry.urls)
        self._timer = ConnectionTimer(self._label)
        self._pc: RTCPeerConnection | None = None
        self._task: asyncio.Task | None = None
        self._gatherer: RTCIceGatherer | None = None
        self._closed = False

    async def begin(self) -> None:
        """Create the peer connection and offer, then gather in the background.

        Raises:
            OfferCreationFailed: If the offer cannot be created.
        """
        self._timer.log_mark("pc_create_start")
        timer = self._timer  # Capture for closures

        try:
            self._pc = self._pc_factory(to_rtc_configuration(self._config))

            @self._pc.on("icegatheringstatechange")
            def on_ice_gathering_state_change():
                if self._pc is None:
                    return
                state = self._pc.iceGatheringState
                timer.log_mark(f"gather_{state}")
                # "complete" is reported only after the candidates are replayed
                if state != "complete" and not self._closed:
                    self._handlers.on_gathering_state(state)

            # No media is sent; a recvonly audio line forces candidate gathering
            self._pc.addTransceiver("audio", direction="recvonly")
            offer = await self._pc.createOffer()
        except asyncio.CancelledError:
            await self.close()
            raise
        except Exception as e:
            await self.close()
            raise OfferCreationFailed(f"Error creating offer: {e}") from e

        self._timer.log_mark("offer_created")
        self._task = asyncio.create_task(self._gather(offer))

    async def _gather(self, offer: RTCSessionDescription) -> None:
        try:
            candidates = await self._collect_candidates(offer)
            for candidate in candidates:
                self._handlers.on_candidate(candidate)
            self._handlers.on_candidate(None)
        except Exception:
            logger.exception(f"Candidate gathering failed for {self._label}")
        self._timer.log_mark("gather_complete")
        self._handlers.on_gathering_state("complete")

    async def _collect_candidates(self, offer: RTCSessionDescription) -> list[Candidate]:
        try:
            await self._pc.setLocalDescription(offer)
        except Exception as e:
            self._timer.log_mark("gather_failed")
            for url in (u for entry in self._config.ice_servers for u in entry.urls):
                error = describe_gathering_error(url, e)
                logger.warning(
                    f"The server {error.url} returned an error with "
                    f"code={error.error_code}: {error.error_text}"
                )
                self._handlers.on_candidate_error(error)
            return await self._fallback_candidates()
        return extract_candidates(self._pc.localDescription.sdp, elapsed=self._timer.elapsed)

    async def _fallback_candidates(self) -> list[Candidate]:
        """Gather host and STUN candidates after a TURN allocation failure.

        aioice aborts the whole gathering when the TURN allocation fails,
        dropping the candidates already found.
        """
        urls = _stun_urls(self._config)
        ice_servers = [RTCIceServer(urls=urls)] if urls else []
        self._gatherer = self._gatherer_factory(ice_servers)
        try:
            await self._gatherer.gather()
            elapsed = self._timer.elapsed
            candidates = []
            for ice in self._gatherer.getLocalCandidates():
                candidate = parse_candidate(candidate_to_sdp(ice), elapsed=elapsed)
                if candidate is not None:
                    candidates.append(candidate)
            return candidates
        except Exception as e:
            logger.debug(f"Fallback gathering failed for {self._label}: {e}")
            return []
        finally:
            await self._close_gatherer()

    async def _close_gatherer(self) -> None:
        """Release the fallback gatherer's sockets.

        RTCIceGatherer has no public close; its aioice connection owns the
        UDP transports.
        """
        gatherer, self._gatherer = self._gatherer, None
        if gatherer is not None:
            await gatherer._connection.close()

    async def close(self) -> None:
        """Cancel gathering and close the peer connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._close_gatherer()
        if self._pc:
            await self._pc.close()
            self._pc = None
        self._timer.log_summary()


class AiortcEngine:
    """Negotiation engine creating one RTCPeerConnection per session."""

    def __init__(
        self,
        pc_factory: Callable[[RTCConfiguration], RTCPeerConnection] | None = None,
        gatherer_factory: Callable[[list[RTCIceServer]], RTCIceGatherer] | None = None,
    ):
        """Initialize engine.

        Args:
            pc_factory: Factory to create RTCPeerConnection (for testing).
            gatherer_factory: Factory to create the fallback ICE gatherer (for testing).
        """
        self._pc_factory = pc_factory or self._default_pc_factory
        self._gatherer_factory = gatherer_factory or self._default_gatherer_factory

    def _default_pc_factory(self, config: RTCConfiguration) -> RTCPeerConnection:
        """Create default RTCPeerConnection."""
        return RTCPeerConnection(configuration=config)

    def _default_gatherer_factory(self, ice_servers: list[RTCIceServer]) -> RTCIceGatherer:
        """Create default ICE gatherer."""
        return RTCIceGatherer(iceServers=ice_servers)

    async def start(
        self, config: NegotiationConfig, handlers: EngineHandlers
    ) -> AiortcSession:
        """Open a session and start gathering.

        Raises:
            OfferCreationFailed: If the offer cannot be created.
        """
        if config.ice_candidate_pool_size:
            logger.debug(
                f"aiortc has no candidate pool; ignoring size {config.ice_candidate_pool_size}"
            )
        session = AiortcSession(config, handlers, self._pc_factory, self._gatherer_factory)
        await session.begin()
        return session
