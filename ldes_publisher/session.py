from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import httpx

from ldes_publisher.errors import SessionError
from ldes_publisher.settings import Settings
from ldes_publisher.utils import get_logger

logger = get_logger("session")


@dataclass(frozen=True)
class PodCredentials:
    web_id: Optional[str]
    email: Optional[str]
    password: Optional[str]
    idp: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PodCredentials":
        return cls(
            web_id=settings.aggregation_pod_web_id,
            email=settings.aggregation_pod_email,
            password=settings.aggregation_pod_password,
            idp=settings.aggregation_pod_idp,
        )

    @property
    def complete(self) -> bool:
        return bool(self.web_id and self.email and self.password)

    def issuer(self) -> str:
        """Identity provider base URL; defaults to the origin of the WebID."""
        if self.idp:
            return self.idp.rstrip("/")
        if not self.web_id:
            raise SessionError("no WebID configured to derive the identity provider from")
        parts = urlsplit(self.web_id)
        return f"{parts.scheme}://{parts.netloc}"


class PodSession:
    """
    Authenticated handle on the aggregation pod.

    Wraps one ``httpx.AsyncClient``; every container call goes through it so
    the bearer token travels with each request.
    """

    def __init__(self, client: httpx.AsyncClient, *, web_id: Optional[str] = None):
        self.client = client
        self.web_id = web_id

    @property
    def authenticated(self) -> bool:
        return "authorization" in self.client.headers

    async def close(self) -> None:
        await self.client.aclose()


def build_timeout(settings: Settings) -> httpx.Timeout:
    return httpx.Timeout(settings.http_read_timeout, connect=settings.http_connect_timeout)


async def get_authenticated_session(
    credentials: PodCredentials,
    *,
    timeout: Optional[httpx.Timeout] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PodSession:
    """
    Community Solid Server client-credentials login.

    Mints a client id/secret with the account email and password, trades them
    for an access token and returns a session whose client sends it as a
    bearer token. Without credentials an anonymous session is returned.
    """
    timeout = timeout or httpx.Timeout(30.0, connect=10.0)
    if not credentials.complete:
        logger.warning("Pod credentials incomplete; continuing with an anonymous session")
        return PodSession(httpx.AsyncClient(timeout=timeout, transport=transport))

    issuer = credentials.issuer()
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            res = await client.post(
                f"{issuer}/idp/credentials/",
                json={
                    "email": credentials.email,
                    "password": credentials.password,
                    "name": "ldes-publisher",
                },
            )
            res.raise_for_status()
            minted = res.json()
            client_id, secret = minted["id"], minted["secret"]

            res = await client.post(
                f"{issuer}/.oidc/token",
                data={"grant_type": "client_credentials", "scope": "webid"},
                auth=(client_id, secret),
            )
            res.raise_for_status()
            token = res.json()["access_token"]
        except httpx.HTTPStatusError as e:
            raise SessionError(
                f"login at {issuer} failed: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise SessionError(f"login at {issuer} failed: {e}") from e

    logger.info(f"Authenticated as {credentials.web_id}")
    client = httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        headers={"Authorization": f"Bearer {token}"},
    )
    return PodSession(client, web_id=credentials.web_id)
