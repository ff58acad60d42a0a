"""MyInvois Authentication Provider.

Handles OAuth2 client-credentials authentication against the MyInvois
identity service. One provider per business line (each line has its own
client id and secret).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiohttp

from core.observability.logging import get_logger

from connectors.myinvois.myinvois_errors import MyInvoisAuthenticationError

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MyInvoisAuthConfig:
    """Configuration for MyInvois authentication.

    Attributes:
        base_url: MyInvois API host (token endpoint lives on the same host)
        client_id: Taxpayer system client ID
        client_secret: Client secret
        scope: OAuth2 scope
    """
    base_url: str
    client_id: str
    client_secret: str
    scope: str = "InvoicingAPI"

    @property
    def token_endpoint(self) -> str:
        """Get the OAuth2 token endpoint."""
        return f"{self.base_url.rstrip('/')}/connect/token"


@dataclass
class MyInvoisToken:
    """OAuth2 access token with expiration tracking."""
    access_token: str
    token_type: str
    expires_in: int
    obtained_at: datetime = field(default_factory=_utcnow)

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        """Check if token is expired (with 5-minute buffer)."""
        return _utcnow() >= (self.expires_at - timedelta(minutes=5))

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


class MyInvoisAuthProvider:
    """Client-credentials token cache for the MyInvois API.

    Usage:
        auth = MyInvoisAuthProvider(MyInvoisAuthConfig(base_url, client_id, secret))
        await auth.ensure_valid_token()
        header = auth.get_authorization_header()
    """

    def __init__(self, config: MyInvoisAuthConfig):
        self.config = config
        self._token: Optional[MyInvoisToken] = None

    async def _fetch_token(self) -> MyInvoisToken:
        """Fetch a new access token.

        Raises:
            MyInvoisAuthenticationError: Token endpoint refused the credentials
        """
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": self.config.scope,
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.config.token_endpoint,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise MyInvoisAuthenticationError(
                        f"Token request failed: {response.status}",
                        response.status,
                        error_text,
                    )
                token_data = await response.json()

        self._token = MyInvoisToken(
            access_token=token_data["access_token"],
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 3600)),
        )
        logger.info(
            "MyInvois token obtained",
            extra_fields={"expires_in": self._token.expires_in},
        )
        return self._token

    def get_token(self) -> Optional[MyInvoisToken]:
        if self._token and not self._token.is_expired:
            return self._token
        return None

    def get_authorization_header(self) -> Optional[str]:
        token = self.get_token()
        return token.authorization_header if token else None

    async def ensure_valid_token(self, force: bool = False) -> MyInvoisToken:
        """Return a valid token, fetching a new one if expired (or forced)."""
        if not force:
            token = self.get_token()
            if token is not None:
                return token
        return await self._fetch_token()

    def clear(self) -> None:
        self._token = None
