"""
Service provider OAuth2 endpoints: authorization URL building and the authorization code exchange.
Provider differences are configuration (endpoints, scope separator, extra exchange params), not subclasses.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlencode

import httpx

from spi_oauth.errors import ProviderExchangeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    auth_url: str
    token_url: str
    scope_separator: str = " "
    # Sent with every code exchange in addition to the standard parameters
    extra_exchange_params: dict[str, str] = field(default_factory=dict)

    def normalize_scopes(self, scopes: list[str] | None) -> str:
        """Join scopes with the provider's separator, dropping blanks and duplicates (order kept)."""
        seen: list[str] = []
        for s in scopes or []:
            s = s.strip()
            if s and s not in seen:
                seen.append(s)
        return self.scope_separator.join(seen)


KNOWN_PROVIDERS = {
    "github": ProviderConfig(
        name="github",
        client_id="",
        client_secret="",
        auth_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
    ),
    "quay": ProviderConfig(
        name="quay",
        client_id="",
        client_secret="",
        auth_url="https://quay.io/oauth/authorize",
        token_url="https://quay.io/oauth/access_token",
    ),
}


@dataclass
class ProviderToken:
    access_token: str
    token_type: str = ""
    refresh_token: str = ""
    # None: the provider did not say when the token expires
    expiry: datetime | None = None


def build_authorize_url(provider: ProviderConfig, *, redirect_uri: str, scopes: list[str], state: str) -> str:
    """Build the provider's authorization URL for the code flow."""
    params = {
        "response_type": "code",
        "client_id": provider.client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    scope = provider.normalize_scopes(scopes)
    if scope:
        params["scope"] = scope
    sep = "&" if "?" in provider.auth_url else "?"
    return f"{provider.auth_url}{sep}{urlencode(params)}"


def _parse_token_body(response: httpx.Response) -> dict:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("text/plain"):
        return {k: v[0] for k, v in parse_qs(response.text).items()}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def token_from_response(data: dict, now: datetime | None = None) -> ProviderToken:
    """Map a token endpoint response body to ProviderToken. Raises ProviderExchangeError if unusable."""
    if data.get("error"):
        raise ProviderExchangeError(data.get("error_description") or data["error"])
    access_token = data.get("access_token")
    if not access_token:
        raise ProviderExchangeError("server response missing access_token")
    expiry = None
    expires_in = data.get("expires_in")
    if expires_in not in (None, "", 0, "0"):
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError):
            raise ProviderExchangeError(f"invalid expires_in: {expires_in!r}")
        expiry = (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)
    return ProviderToken(
        access_token=str(access_token),
        token_type=str(data.get("token_type") or ""),
        refresh_token=str(data.get("refresh_token") or ""),
        expiry=expiry,
    )


class ProviderExchange:
    def __init__(self, provider: ProviderConfig, *, redirect_uri: str, http: httpx.AsyncClient):
        self.provider = provider
        self.redirect_uri = redirect_uri
        self._http = http

    async def exchange(self, code: str, scope: str | None) -> ProviderToken:
        """
        Exchange the authorization code for a token.
        scope is passed again even though RFC 6749 doesn't ask for it: quay requires it,
        other providers ignore it.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.provider.client_id,
            "client_secret": self.provider.client_secret,
            "scope": scope or "",
        }
        data.update(self.provider.extra_exchange_params)
        try:
            r = await self._http.post(
                self.provider.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProviderExchangeError(f"token request failed: {e}") from e

        body = _parse_token_body(r)
        if r.status_code != 200:
            err_desc = body.get("error_description", body.get("error", r.text)) or "token exchange failed"
            raise ProviderExchangeError(f"{r.status_code}: {err_desc}")
        token = token_from_response(body)
        logger.debug("Token exchange with %s ok", self.provider.name)
        return token
