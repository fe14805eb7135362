"""Tests for the aiortc-backed negotiation engine."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from aioice.stun import Class, Message, Method, TransactionFailed, TransactionTimeout
from aiortc import RTCIceCandidate

from turnprobe.engine import (
    NO_RESPONSE_ERROR_CODE,
    AiortcEngine,
    ConnectionTimer,
    describe_gathering_error,
    to_rtc_configuration,
)
from turnprobe.errors import OfferCreationFailed
from turnprobe.protocols import EngineHandlers, IceServerEntry, NegotiationConfig

OFFER_SDP = (
    "v=0\r\n"
    "o=- 3912345678 3912345678 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "a=candidate:1 1 udp 2130706431 192.168.1.100 50000 typ host\r\n"
    "a=candidate:2 1 udp 1694498815 203.0.113.50 50000 typ srflx raddr 192.168.1.100 rport 50000\r\n"
    "a=candidate:3 1 udp 16777215 198.51.100.7 61000 typ relay raddr 203.0.113.50 rport 50000\r\n"
)


def make_config(url="turn:198.51.100.7:3478", username="1:bongo", credential="pw"):
    return NegotiationConfig(
        ice_servers=[IceServerEntry(urls=[url], username=username, credential=credential)]
    )


class Recorder:
    """Collects engine events and signals gathering completion."""

    def __init__(self):
        self.events = []
        self.complete = asyncio.Event()

    @property
    def handlers(self) -> EngineHandlers:
        return EngineHandlers(
            on_candidate=lambda c: self.events.append(("candidate", c)),
            on_gathering_state=self._on_state,
            on_candidate_error=lambda e: self.events.append(("error", e)),
        )

    def _on_state(self, state):
        self.events.append(("state", state))
        if state == "complete":
            self.complete.set()

    def candidate_types(self):
        return [c.type for kind, c in self.events if kind == "candidate" and c is not None]


def make_mock_pc(set_local_side_effect=None):
    """RTCPeerConnection mock with a capturing ``on`` decorator."""
    mock_pc = AsyncMock()
    mock_pc.iceGatheringState = "new"

    mock_offer = Mock()
    mock_offer.sdp = "v=0\r\n"
    mock_offer.type = "offer"

    local_description = Mock()
    local_description.sdp = OFFER_SDP

    mock_pc.createOffer = AsyncMock(return_value=mock_offer)
    mock_pc.setLocalDescription = AsyncMock(side_effect=set_local_side_effect)
    mock_pc.localDescription = local_description
    mock_pc.addTransceiver = Mock()
    mock_pc.close = AsyncMock()

    handlers = {}

    def mock_on(event):
        def decorator(fn):
            handlers[event] = fn
            return fn

        return decorator

    mock_pc.on = mock_on
    mock_pc.handlers = handlers
    return mock_pc


def make_mock_gatherer(candidates=None, side_effect=None):
    gatherer = Mock()
    gatherer.gather = AsyncMock(side_effect=side_effect)
    gatherer.getLocalCandidates = Mock(return_value=candidates or [])
    gatherer._connection.close = AsyncMock()
    return gatherer


def auth_failure() -> TransactionFailed:
    response = Message(message_method=Method.ALLOCATE, message_class=Class.ERROR)
    response.attributes["ERROR-CODE"] = (401, "Unauthorized")
    return TransactionFailed(response)


class TestConfiguration:
    """Test translation to aiortc configuration."""

    def test_turn_udp_gets_stun_companion(self):
        config = to_rtc_configuration(make_config("turn:198.51.100.7:3478"))

        [server] = config.iceServers
        assert server.urls == ["turn:198.51.100.7:3478", "stun:198.51.100.7:3478"]
        assert server.username == "1:bongo"
        assert server.credential == "pw"

    def test_turn_tcp_has_no_companion(self):
        config = to_rtc_configuration(make_config("turn:198.51.100.7:443?transport=tcp"))
        assert config.iceServers[0].urls == ["turn:198.51.100.7:443?transport=tcp"]

    def test_stun_has_no_companion(self):
        config = to_rtc_configuration(make_config("stun:198.51.100.7:3478", "", ""))

        [server] = config.iceServers
        assert server.urls == ["stun:198.51.100.7:3478"]
        assert server.username is None
        assert server.credential is None


class TestDescribeGatheringError:
    """Test mapping aioice failures to candidate errors."""

    def test_transaction_failed_uses_error_code(self):
        error = describe_gathering_error("turn:x:3478", auth_failure())

        assert error.url == "turn:x:3478"
        assert error.error_code == 401
        assert error.error_text == "Unauthorized"

    def test_timeout_is_no_response(self):
        error = describe_gathering_error("turn:x:3478", TransactionTimeout())
        assert error.error_code == NO_RESPONSE_ERROR_CODE

    def test_other_exception(self):
        error = describe_gathering_error("turn:x:443", ConnectionRefusedError("refused"))

        assert error.error_code == NO_RESPONSE_ERROR_CODE
        assert error.error_text == "refused"


class TestAiortcEngine:
    """Test sessions on a mocked RTCPeerConnection."""

    async def test_replays_candidates_then_completes(self):
        mock_pc = make_mock_pc()
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)

        assert recorder.candidate_types() == ["host", "srflx", "relay"]
        # End-of-candidates comes after the last candidate, before complete
        assert recorder.events[-2] == ("candidate", None)
        assert recorder.events[-1] == ("state", "complete")
        await session.close()

    async def test_forces_audio_line(self):
        mock_pc = make_mock_pc()
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)

        session = await engine.start(make_config(), Recorder().handlers)

        mock_pc.addTransceiver.assert_called_once_with("audio", direction="recvonly")
        await session.close()

    async def test_passes_configuration_to_factory(self):
        mock_pc = make_mock_pc()
        seen = []

        def factory(cfg):
            seen.append(cfg)
            return mock_pc

        session = await AiortcEngine(pc_factory=factory).start(make_config(), Recorder().handlers)

        assert seen[0].iceServers[0].urls[0] == "turn:198.51.100.7:3478"
        await session.close()

    async def test_offer_failure_raises_and_closes(self):
        mock_pc = make_mock_pc()
        mock_pc.createOffer = AsyncMock(side_effect=RuntimeError("no codecs"))
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)

        with pytest.raises(OfferCreationFailed, match="no codecs"):
            await engine.start(make_config(), Recorder().handlers)

        mock_pc.close.assert_awaited_once()

    async def test_pc_factory_failure_is_offer_failure(self):
        def factory(cfg):
            raise ValueError("bad configuration")

        with pytest.raises(OfferCreationFailed):
            await AiortcEngine(pc_factory=factory).start(make_config(), Recorder().handlers)

    async def test_turn_failure_reports_error_and_falls_back(self):
        mock_pc = make_mock_pc(set_local_side_effect=auth_failure())
        srflx = RTCIceCandidate(
            component=1,
            foundation="2",
            ip="203.0.113.50",
            port=50000,
            priority=1694498815,
            protocol="udp",
            type="srflx",
        )
        gatherer = make_mock_gatherer([srflx])
        gatherer_servers = []

        def gatherer_factory(servers):
            gatherer_servers.append(servers)
            return gatherer

        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc, gatherer_factory=gatherer_factory)
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)

        errors = [e for kind, e in recorder.events if kind == "error"]
        assert [(e.url, e.error_code) for e in errors] == [("turn:198.51.100.7:3478", 401)]
        assert recorder.candidate_types() == ["srflx"]
        assert gatherer_servers[0][0].urls == ["stun:198.51.100.7:3478"]
        gatherer._connection.close.assert_awaited_once()
        await session.close()

    async def test_fallback_without_stun_gathers_host_only(self):
        mock_pc = make_mock_pc(set_local_side_effect=ConnectionRefusedError("refused"))
        gatherer_servers = []

        def gatherer_factory(servers):
            gatherer_servers.append(servers)
            return make_mock_gatherer()

        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc, gatherer_factory=gatherer_factory)
        recorder = Recorder()

        session = await engine.start(
            make_config("turn:198.51.100.7:443?transport=tcp"), recorder.handlers
        )
        await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)

        assert gatherer_servers == [[]]
        assert recorder.candidate_types() == []
        await session.close()

    async def test_fallback_failure_still_completes(self):
        mock_pc = make_mock_pc(set_local_side_effect=TransactionTimeout())
        engine = AiortcEngine(
            pc_factory=lambda cfg: mock_pc,
            gatherer_factory=lambda servers: make_mock_gatherer(side_effect=OSError("down")),
        )
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)

        assert recorder.candidate_types() == []
        await session.close()

    async def test_fallback_failure_releases_gatherer(self):
        mock_pc = make_mock_pc(set_local_side_effect=TransactionTimeout())
        gatherer = make_mock_gatherer(side_effect=OSError("down"))
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc, gatherer_factory=lambda servers: gatherer)
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)
        await session.close()

        gatherer._connection.close.assert_awaited_once()

    async def test_close_releases_gatherer_mid_fallback(self):
        async def hang():
            await asyncio.Event().wait()

        mock_pc = make_mock_pc(set_local_side_effect=TransactionTimeout())
        gatherer = make_mock_gatherer(side_effect=hang)
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc, gatherer_factory=lambda servers: gatherer)

        session = await engine.start(make_config(), Recorder().handlers)
        for _ in range(5):
            await asyncio.sleep(0)
        assert gatherer.gather.await_count == 1

        await session.close()

        gatherer._connection.close.assert_awaited_once()
        mock_pc.close.assert_awaited_once()

    async def test_handler_failure_still_completes(self, caplog):
        mock_pc = make_mock_pc()
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)
        recorder = Recorder()

        def broken_on_candidate(candidate):
            raise RuntimeError("handler bug")

        handlers = EngineHandlers(
            on_candidate=broken_on_candidate,
            on_gathering_state=recorder.handlers.on_gathering_state,
            on_candidate_error=recorder.handlers.on_candidate_error,
        )

        with caplog.at_level("ERROR", logger="turnprobe.engine"):
            session = await engine.start(make_config(), handlers)
            await asyncio.wait_for(recorder.complete.wait(), timeout=1.0)

        assert recorder.events == [("state", "complete")]
        assert "Candidate gathering failed" in caplog.text
        await session.close()

    async def test_gathering_state_forwarded_except_complete(self):
        """The pc reaching complete is not forwarded; the replay reports it."""

        async def hang(offer):
            await asyncio.Event().wait()

        mock_pc = make_mock_pc(set_local_side_effect=hang)
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        mock_pc.iceGatheringState = "gathering"
        mock_pc.handlers["icegatheringstatechange"]()
        mock_pc.iceGatheringState = "complete"
        mock_pc.handlers["icegatheringstatechange"]()

        assert recorder.events == [("state", "gathering")]
        await session.close()

    async def test_close_cancels_pending_gathering(self):
        async def hang(offer):
            await asyncio.Event().wait()

        mock_pc = make_mock_pc(set_local_side_effect=hang)
        engine = AiortcEngine(pc_factory=lambda cfg: mock_pc)
        recorder = Recorder()

        session = await engine.start(make_config(), recorder.handlers)
        await asyncio.sleep(0)
        await session.close()
        await session.close()

        mock_pc.close.assert_awaited_once()
        assert not recorder.complete.is_set()


class TestConnectionTimer:
    """Test gathering phase timing."""

    def test_marks_are_monotonic(self):
        timer = ConnectionTimer("test")
        first = timer.mark("a")
        second = timer.mark("b")
        assert 0 <= first <= second

    def test_summary_logged(self, caplog):
        timer = ConnectionTimer("stun:x:1")
        timer.mark("gather_complete")

        with caplog.at_level("INFO", logger="turnprobe.engine"):
            timer.log_summary()

        assert "[TIMING] stun:x:1 summary" in caplog.text
