"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import pytest_asyncio

from turnprobe.errors import OfferCreationFailed
from turnprobe.protocols import Candidate, CandidateGatheringError, EngineHandlers


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from turnprobe.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def cleanup_aiohttp_sessions():
    """Give aiohttp sessions time to clean up their connectors.

    aiohttp's ClientSession.close() doesn't wait for the underlying
    connector to fully close, which can leave "Unclosed client session"
    warnings when the event loop closes first.
    """
    yield
    await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def fast_ice_connectivity():
    """Shorten aioice STUN retransmissions, as aiortc's own test suite does.

    Without this an unreachable server takes ~10 seconds per transaction.
    """
    import aioice.stun

    old_retry_max = aioice.stun.RETRY_MAX
    old_retry_rto = aioice.stun.RETRY_RTO

    aioice.stun.RETRY_MAX = 1
    aioice.stun.RETRY_RTO = 0.1

    yield

    aioice.stun.RETRY_MAX = old_retry_max
    aioice.stun.RETRY_RTO = old_retry_rto


# =============================================================================
# Fake negotiation engine
# =============================================================================


def make_candidate(type_: str, address: str = "192.0.2.1", port: int = 50000) -> Candidate:
    """Candidate with a realistic raw attribute for the given type."""
    priorities = {"host": 2130706431, "srflx": 1694498815, "prflx": 1862270975, "relay": 16777215}
    raw = f"candidate:1 1 udp {priorities[type_]} {address} {port} typ {type_}"
    return Candidate(
        type=type_,
        foundation="1",
        component=1,
        protocol="udp",
        priority=priorities[type_],
        address=address,
        port=port,
        candidate=raw,
    )


class FakeSession:
    """Engine session that records closes and stops its replay task."""

    def __init__(self, engine: "FakeEngine"):
        self._engine = engine
        self.task: asyncio.Task | None = None
        self.closed = False
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        self._engine.active -= 1
        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass


class FakeEngine:
    """Scripted negotiation engine.

    ``scripts`` maps a server URL to a list of events replayed in order:
    - ("candidate", Candidate | None)
    - ("state", "gathering" | "complete")
    - ("error", CandidateGatheringError)
    - ("sleep", seconds)
    - ("hang",) never finishes
    A server mapped to OfferCreationFailed makes ``start`` raise it.
    Unknown servers complete immediately with no candidates.
    """

    def __init__(self, scripts: dict | None = None, deliver_inline: bool = False):
        self.scripts = scripts or {}
        self.deliver_inline = deliver_inline
        self.configs = []
        self.sessions: list[FakeSession] = []
        self.active = 0
        self.max_active = 0

    async def start(self, config, handlers: EngineHandlers) -> FakeSession:
        self.configs.append(config)
        url = config.ice_servers[0].urls[0]
        script = self.scripts.get(url, [("state", "complete")])
        if script is OfferCreationFailed:
            raise OfferCreationFailed(f"no offer for {url}")

        session = FakeSession(self)
        self.sessions.append(session)
        self.active += 1
        self.max_active = max(self.max_active, self.active)

        if self.deliver_inline:
            await self._replay(script, handlers, session)
        else:
            session.task = asyncio.create_task(self._replay(script, handlers, session))
        return session

    async def _replay(self, script, handlers: EngineHandlers, session: FakeSession) -> None:
        for event in script:
            if session.closed:
                return
            kind = event[0]
            if kind == "candidate":
                handlers.on_candidate(event[1])
            elif kind == "state":
                handlers.on_gathering_state(event[1])
            elif kind == "error":
                handlers.on_candidate_error(event[1])
            elif kind == "sleep":
                await asyncio.sleep(event[1])
            elif kind == "hang":
                await asyncio.Event().wait()


@pytest.fixture
def candidate():
    """Factory for candidates of a given type."""
    return make_candidate


@pytest.fixture
def fake_engine():
    """Factory for scripted fake engines."""
    return FakeEngine


@pytest.fixture
def gathering_error():
    """A typical TURN authentication error record."""
    return CandidateGatheringError(
        url="turn:198.51.100.7:3478", error_code=401, error_text="Unauthorized"
    )
