"""
GitHub token acquisition.

Token providers are tried in priority order and the first one that yields a
token wins:

1. GitHub App installation token (JWT signed with the app's private key,
   exchanged for a one-hour installation token, refreshed 5 minutes early)
2. Personal access token from configuration / GITHUB_TOKEN
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

import httpx
import jwt
from loguru import logger

from .config import AuthConfig, GitHubConfig
from .utils import AuthError, parse_timestamp


class TokenProvider(Protocol):
    """Source of bearer tokens."""
    name: str
    rate_limit: int

    def get_token(self) -> str:
        ...


class PersonalTokenProvider:
    """Static personal access token."""

    name = "Personal Access Token"
    rate_limit = 5000

    def __init__(self, token: Optional[str]):
        self._token = token

    def get_token(self) -> str:
        if not self._token:
            raise AuthError("No personal access token configured")
        return self._token


@dataclass
class _CachedToken:
    token: str
    refresh_at: datetime


class GitHubAppTokenProvider:
    """Installation access token for a GitHub App."""

    name = "GitHub App"
    rate_limit = 5000  # per installation per hour

    REFRESH_EARLY = timedelta(minutes=5)

    def __init__(
        self,
        app_id: str,
        installation_id: str,
        private_key_path: str,
        github: Optional[GitHubConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self.installation_id = installation_id
        self.private_key_path = Path(private_key_path)
        self._github = github or GitHubConfig()
        self._transport = transport
        self._clock = clock
        self._private_key: Optional[str] = None
        self._cached: Optional[_CachedToken] = None

    def _load_private_key(self) -> str:
        if self._private_key is None:
            try:
                self._private_key = self.private_key_path.read_text(encoding="utf-8")
            except OSError as e:
                raise AuthError(f"Failed to read private key {self.private_key_path}: {e}") from e
        return self._private_key

    def generate_jwt(self) -> str:
        """Sign the short-lived app JWT (RS256)."""
        now = int(self._clock())
        payload = {
            "iat": now - 60,  # clock skew allowance
            "exp": now + 10 * 60,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self._load_private_key(), algorithm="RS256")

    def get_token(self) -> str:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if self._cached and self._cached.refresh_at > now:
            return self._cached.token

        url = f"{self._github.api_url}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "Authorization": f"Bearer {self.generate_jwt()}",
            "User-Agent": self._github.user_agent,
        }

        try:
            with httpx.Client(timeout=self._github.timeout, transport=self._transport) as client:
                response = client.post(url, headers=headers)
        except httpx.RequestError as e:
            raise AuthError(f"Failed to reach GitHub for installation token: {e}") from e

        if not response.is_success:
            raise AuthError(
                f"Failed to get installation token: {response.status_code} {response.text}"
            )

        data = response.json()
        expires_at = parse_timestamp(data["expires_at"])
        self._cached = _CachedToken(
            token=data["token"],
            refresh_at=expires_at - self.REFRESH_EARLY,
        )
        logger.info(f"GitHub App token obtained, expires at: {data['expires_at']}")
        return self._cached.token


class TokenChain:
    """
    Priority-ordered list of token providers; first success wins.

    Instances are callable so they can be handed to GitHubClient as its
    token_provider.
    """

    def __init__(self, providers: list[TokenProvider]):
        self.providers = list(providers)
        self.active_provider: Optional[TokenProvider] = None

    def __call__(self) -> str:
        return self.get_token()

    def get_token(self) -> str:
        if not self.providers:
            raise AuthError("Neither GitHub App nor Personal Access Token is configured")

        failures = []
        for provider in self.providers:
            try:
                token = provider.get_token()
            except AuthError as e:
                logger.warning(f"{provider.name} authentication failed: {e}")
                failures.append(f"{provider.name}: {e}")
                continue

            if self.active_provider is not provider:
                logger.info(f"Using {provider.name} credentials")
                self.active_provider = provider
            return token

        raise AuthError("All GitHub authentication methods failed: " + "; ".join(failures))

    def describe(self) -> str:
        provider = self.active_provider or (self.providers[0] if self.providers else None)
        if provider is None:
            return "unauthenticated"
        return f"{provider.name} ({provider.rate_limit} requests/hour)"


def build_token_chain(
    auth: AuthConfig,
    github: Optional[GitHubConfig] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> TokenChain:
    """Build the provider chain from configuration (app first, then PAT)."""
    providers: list[TokenProvider] = []
    if auth.app_configured:
        providers.append(GitHubAppTokenProvider(
            app_id=auth.app_id,
            installation_id=auth.installation_id,
            private_key_path=auth.private_key_path,
            github=github,
            transport=transport,
        ))
    if auth.token:
        providers.append(PersonalTokenProvider(auth.token))
    return TokenChain(providers)
