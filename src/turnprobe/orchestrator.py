"""Batch orchestrator: probe a server list one server at a time."""

import asyncio
import logging

from turnprobe.classifier import classify
from turnprobe.config import DEFAULT_PROBE_TIMEOUT
from turnprobe.protocols import CredentialProvider, ProbeResult, SessionState, Verdict
from turnprobe.session import SessionDriver
from turnprobe.uri import ServerUri, parse_server_uri

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Sequences probes across a server list and collects ordered verdicts.

    Servers are probed strictly one after another so that gathering sessions
    never compete for local ports, and results line up with the input order.
    """

    def __init__(
        self,
        credential_provider: CredentialProvider,
        driver: SessionDriver | None = None,
        batch_timeout: float | None = None,
    ):
        """Initialize orchestrator.

        Args:
            credential_provider: Source of the credential pair for the run.
            driver: Session driver (defaults to one on the aiortc engine).
            batch_timeout: Global deadline in seconds for the whole run.
                Servers not started before it passes are not probed and
                get the verdict for an empty candidate set.
        """
        self._credential_provider = credential_provider
        self._driver = driver or SessionDriver()
        self.batch_timeout = batch_timeout

    async def run_detailed(
        self,
        servers: list[str] | list[ServerUri],
        timeout_per_server: float = DEFAULT_PROBE_TIMEOUT,
    ) -> list[ProbeResult]:
        """Probe every server and keep the per-session diagnostics.

        Raises:
            CredentialUnavailable: If no credential can be obtained.
            InvalidServerUri: If any server URI is malformed.
        """
        parsed = [s if isinstance(s, ServerUri) else parse_server_uri(s) for s in servers]

        credential = await self._credential_provider.obtain_credential()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.batch_timeout if self.batch_timeout is not None else None
        results: list[ProbeResult] = []

        for index, server in enumerate(parsed, start=1):
            remaining = deadline - loop.time() if deadline is not None else None
            if remaining is not None and remaining <= 0:
                logger.warning(f"Batch deadline passed, skipping {server}")
                results.append(
                    ProbeResult(verdict=classify(server, []), state=SessionState.TIMED_OUT)
                )
                continue

            timeout = timeout_per_server if remaining is None else min(timeout_per_server, remaining)
            logger.info(f"[{index}/{len(parsed)}] {server}")
            session = await self._driver.run_session(server, credential, timeout)
            verdict = classify(server, session.candidates)
            logger.info(verdict.message)
            results.append(
                ProbeResult(
                    verdict=verdict,
                    state=session.state,
                    candidates=list(session.candidates),
                    errors=list(session.errors),
                    elapsed=session.elapsed,
                )
            )

        return results

    async def run(
        self,
        servers: list[str] | list[ServerUri],
        timeout_per_server: float = DEFAULT_PROBE_TIMEOUT,
    ) -> list[Verdict]:
        """Probe every server and return one verdict per server, in order."""
        results = await self.run_detailed(servers, timeout_per_server)
        return [result.verdict for result in results]
