"""Credential providers for a probing run."""

import logging

import aiohttp

from turnprobe.crypto import DEFAULT_TTL, derive_credential
from turnprobe.errors import CredentialUnavailable
from turnprobe.protocols import Credential

logger = logging.getLogger(__name__)


class StaticCredentialProvider:
    """Provider for a pair supplied directly."""

    def __init__(self, username: str = "", password: str = ""):
        self._credential = Credential(username=username, password=password)

    async def obtain_credential(self) -> Credential:
        return self._credential


class LocalCredentialProvider:
    """Derives the pair in-process from the shared TURN secret."""

    def __init__(self, secret: str, identity: str, ttl: int = DEFAULT_TTL):
        self._secret = secret
        self._identity = identity
        self._ttl = ttl

    async def obtain_credential(self) -> Credential:
        credential = derive_credential(self._secret, self._identity, ttl=self._ttl)
        logger.debug(f"Derived local credential for {credential.username}")
        return credential


class HttpCredentialProvider:
    """Fetches the pair from a credential endpoint.

    The endpoint must answer ``GET`` with status 200 and a JSON body
    ``{"username": ..., "password": ...}``. There is no retry: any failure
    raises CredentialUnavailable.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize HTTP credential provider.

        Args:
            url: Full URL of the credential endpoint.
            timeout: Total request timeout in seconds.
            session: Existing client session to reuse (for testing).
        """
        self.url = url
        self.timeout = timeout
        self._session = session

    async def obtain_credential(self) -> Credential:
        """Fetch credentials.

        Raises:
            CredentialUnavailable: If the endpoint is unreachable, returns a
                non-200 status, or the body is not a valid credential pair.
        """
        if self._session is not None:
            return await self._fetch(self._session)

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._fetch(session)

    async def _fetch(self, session: aiohttp.ClientSession) -> Credential:
        try:
            async with session.get(self.url) as resp:
                if resp.status != 200:
                    raise CredentialUnavailable(
                        f"Credential endpoint returned HTTP {resp.status}"
                    )
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise CredentialUnavailable(f"Cannot reach credential endpoint: {e}") from e
        except TimeoutError as e:
            raise CredentialUnavailable(
                f"Credential endpoint timeout after {self.timeout}s"
            ) from e
        except ValueError as e:
            raise CredentialUnavailable(f"Invalid credential response: {e}") from e

        if not isinstance(data, dict):
            raise CredentialUnavailable("Credential response is not a JSON object")
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not isinstance(password, str):
            raise CredentialUnavailable("Credential response missing username or password")

        logger.info(f"Fetched credentials for {username}")
        return Credential(username=username, password=password)
