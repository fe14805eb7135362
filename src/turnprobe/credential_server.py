"""HTTP endpoint minting time-limited TURN credentials.

Routes:
- /giveMeCredentials - Derive a fresh {username, password} pair
- /health - Health check

CORS is open so browser-based probers on any origin can fetch credentials.
"""

import logging
from typing import Awaitable, Callable, Optional

from aiohttp import web

from turnprobe.config import DEFAULT_CREDENTIAL_TTL, DEFAULT_IDENTITY
from turnprobe.crypto import derive_credential

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
}


@web.middleware
async def cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Attach CORS headers to every response, errors included."""
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


class CredentialServer:
    """aiohttp server for the credential endpoint."""

    def __init__(
        self,
        secret: str,
        identity: str = DEFAULT_IDENTITY,
        ttl: int = DEFAULT_CREDENTIAL_TTL,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize credential server.

        Args:
            secret: Shared TURN secret.
            identity: Identity embedded in every username.
            ttl: Credential validity in seconds.
            clock: Injectable time source (for testing).
        """
        if not secret:
            raise ValueError("Credential server needs a non-empty secret")
        self._secret = secret
        self.identity = identity
        self.ttl = ttl
        self._clock = clock

        self.app = web.Application(middlewares=[cors_middleware])
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/giveMeCredentials", self._handle_credentials)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK")

    async def _handle_credentials(self, request: web.Request) -> web.Response:
        now = self._clock() if self._clock else None
        credential = derive_credential(self._secret, self.identity, ttl=self.ttl, now=now)
        logger.info(f"Issued credentials to {request.remote}: {credential.username}")
        return web.json_response(
            {"username": credential.username, "password": credential.password}
        )

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Credential server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Credential server closed")
