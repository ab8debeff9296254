"""
Blackbaud SKY API OAuth2 tokens.

TokenCache hands out short-lived bearer tokens, refreshing them from the
long-lived rotating refresh token held in a CredentialStore.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol
from urllib.parse import urlencode

import httpx

from .client import HTTPClient, decode_json
from .errors import AuthError, RetryableHTTPError
from .log_config import get_logger

logger = get_logger(__name__)

# Tokens are treated as expired this long before their real expiry.
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)

# Used when the token endpoint omits expires_in.
DEFAULT_TOKEN_TTL = timedelta(minutes=60)


class CredentialStore(Protocol):
    """Holds the long-lived refresh token."""

    def get(self) -> str:
        ...

    def save(self, secret: str) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedToken:
    """A bearer token and the instant it expires."""
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime, buffer: timedelta = TOKEN_EXPIRY_BUFFER) -> bool:
        return bool(self.value) and now < self.expires_at - buffer


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: str = ""
    expires_in: int = 0
    token_type: str = ""

    @classmethod
    def from_api(cls, raw: Dict) -> "TokenResponse":
        try:
            expires_in = int(raw.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return cls(
            access_token=raw.get("access_token") or "",
            refresh_token=raw.get("refresh_token") or "",
            expires_in=expires_in,
            token_type=raw.get("token_type") or "",
        )


def _post_token_form(http: HTTPClient, token_url: str, form: Dict[str, str]) -> TokenResponse:
    """POST a token request form and parse the response."""
    try:
        response = http.post(
            token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except (httpx.HTTPError, RetryableHTTPError) as exc:
        raise AuthError(f"token request failed: {exc}") from exc

    if response.status_code != 200:
        raise AuthError(
            f"token request failed with status {response.status_code}: {response.text[:200]}"
        )

    try:
        tokens = TokenResponse.from_api(decode_json(response))
    except (ValueError, AttributeError) as exc:
        raise AuthError(f"decoding token response: {exc}") from exc

    if not tokens.access_token:
        raise AuthError("token response carries no access_token")
    return tokens


class TokenCache:
    """
    Thread-safe access token cache with double-checked refresh.

    The current token is one immutable CachedToken, so readers can check it
    without the lock. Callers that find it missing or near expiry serialize
    on the lock and re-check before refreshing, so exactly one network
    refresh happens per expiry cycle.
    """

    def __init__(
        self,
        http: HTTPClient,
        token_url: str,
        client_id: str,
        client_secret: str,
        credentials: CredentialStore,
        clock: Callable[[], datetime] = _utcnow,
        expiry_buffer: timedelta = TOKEN_EXPIRY_BUFFER,
        default_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        self._http = http
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._credentials = credentials
        self._clock = clock
        self._expiry_buffer = expiry_buffer
        self._default_ttl = default_ttl
        self._lock = threading.Lock()
        self._token: Optional[CachedToken] = None

    def _valid_token(self) -> Optional[str]:
        token = self._token
        if token is not None and token.is_valid(self._clock(), self._expiry_buffer):
            return token.value
        return None

    def access_token(self) -> str:
        """
        Return a valid bearer token, refreshing it when absent or near expiry.

        Raises:
            AuthError: When the refresh token cannot be read, exchanged or
                persisted. The cached token is left unchanged.
        """
        value = self._valid_token()
        if value is not None:
            return value

        with self._lock:
            # Another caller may have refreshed while we waited.
            value = self._valid_token()
            if value is not None:
                return value
            self._token = self._refresh()
            return self._token.value

    def _refresh(self) -> CachedToken:
        try:
            refresh_token = self._credentials.get()
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(f"reading refresh token: {exc}") from exc
        if not refresh_token:
            raise AuthError("no refresh token stored; run 'giftbridge auth-exchange' first")

        logger.debug("Refreshing Blackbaud access token", token_url=self._token_url)
        tokens = _post_token_form(self._http, self._token_url, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        })

        if tokens.refresh_token and tokens.refresh_token != refresh_token:
            try:
                self._credentials.save(tokens.refresh_token)
            except AuthError:
                raise
            except Exception as exc:
                raise AuthError(f"saving refresh token: {exc}") from exc
            logger.info("Stored rotated refresh token")

        ttl = timedelta(seconds=tokens.expires_in) if tokens.expires_in > 0 else self._default_ttl
        cached = CachedToken(value=tokens.access_token, expires_at=self._clock() + ttl)
        logger.info("Access token refreshed", expires_at=cached.expires_at.isoformat())
        return cached


def authorization_url(authorize_url: str, client_id: str, redirect_uri: str, state: str) -> str:
    """Build the URL a user opens to grant the application access."""
    query = urlencode({
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "state": state,
    })
    return f"{authorize_url}?{query}"


def exchange_code(
    http: HTTPClient,
    token_url: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    code: str,
) -> TokenResponse:
    """
    Exchange an authorization code for access and refresh tokens.

    Raises:
        AuthError: When the exchange fails or yields no refresh token
    """
    tokens = _post_token_form(http, token_url, {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
    })
    if not tokens.refresh_token:
        raise AuthError("token response carries no refresh_token")
    return tokens
