"""
SPI OAuth service configuration.
No secrets in this file; client secrets and the state signing secret come from env or files.
"""
import logging
import os
import secrets
from pathlib import Path

from spi_oauth.exchange import KNOWN_PROVIDERS, ProviderConfig

logger = logging.getLogger(__name__)

# Public base URL of this service; routes and the provider redirect_uri live under it
BASE_URL = os.environ.get("SPI_BASE_URL", "http://127.0.0.1:8000/oauth").rstrip("/")

# Shared with the operator that mints the anonymous state
STATE_SIGNING_SECRET = os.environ.get("SPI_STATE_SIGNING_SECRET", "")
STATE_SIGNING_SECRET_FILE = os.environ.get("SPI_STATE_SIGNING_SECRET_FILE", "").strip() or None

# Comma-separated provider names, e.g. "github,quay"
PROVIDERS = os.environ.get("SPI_PROVIDERS", "github")

# Server-side session storage (SQLAlchemy URL)
SESSION_DATABASE_URL = os.environ.get("SPI_SESSION_DATABASE_URL", "sqlite:///./spi_sessions.db")

# Idle lifetime of a browser session and any pending flows in it
SESSION_TTL_SECONDS = int(os.environ.get("SPI_SESSION_TTL_SECONDS", "1800"))

SESSION_COOKIE_SECURE = os.environ.get("SPI_SESSION_COOKIE_SECURE", "").strip().lower() in ("1", "true", "yes", "on") or BASE_URL.startswith("https://")

# "kubernetes" (Secrets in the token's namespace) or "memory" (dev only)
TOKEN_STORAGE = os.environ.get("SPI_TOKEN_STORAGE", "kubernetes").strip().lower()

# Timeout for every outbound call (cluster API and provider token endpoint)
HTTP_TIMEOUT_SECONDS = float(os.environ.get("SPI_HTTP_TIMEOUT_SECONDS", "10"))

# Optional HTML template for the redirect notice page; must contain $url
REDIRECT_TEMPLATE_PATH = os.environ.get("SPI_REDIRECT_TEMPLATE_PATH", "").strip() or None

LOG_LEVEL = os.environ.get("SPI_LOG_LEVEL", "INFO").upper()


def load_signing_secret() -> bytes:
    """
    Return the state signing secret from file or env.
    If neither is configured, generate a random one; states minted elsewhere won't verify (dev only).
    """
    if STATE_SIGNING_SECRET_FILE:
        data = Path(STATE_SIGNING_SECRET_FILE).read_bytes().strip()
        if data:
            return data
        logger.warning("State signing secret file %s is empty", STATE_SIGNING_SECRET_FILE)
    if STATE_SIGNING_SECRET:
        return STATE_SIGNING_SECRET.encode("utf-8")
    logger.warning("No state signing secret configured; generated a random one for this process")
    return secrets.token_bytes(32)


def _env_for(name: str, suffix: str) -> str | None:
    return os.environ.get(f"SPI_{name.upper()}_{suffix}", "").strip() or None


def load_providers(names: str | None = None) -> list[ProviderConfig]:
    """
    Build provider capabilities from SPI_PROVIDERS and SPI_<NAME>_* variables.
    Known providers (github, quay) have default endpoints; others must set AUTH_URL and TOKEN_URL.
    """
    providers = []
    for raw in (names if names is not None else PROVIDERS).split(","):
        name = raw.strip().lower()
        if not name:
            continue
        defaults = KNOWN_PROVIDERS.get(name)
        auth_url = _env_for(name, "AUTH_URL") or (defaults.auth_url if defaults else None)
        token_url = _env_for(name, "TOKEN_URL") or (defaults.token_url if defaults else None)
        if not auth_url or not token_url:
            raise ValueError(f"provider {name!r} needs SPI_{name.upper()}_AUTH_URL and SPI_{name.upper()}_TOKEN_URL")
        providers.append(
            ProviderConfig(
                name=name,
                client_id=_env_for(name, "CLIENT_ID") or "",
                client_secret=_env_for(name, "CLIENT_SECRET") or "",
                auth_url=auth_url,
                token_url=token_url,
                scope_separator=defaults.scope_separator if defaults else " ",
                extra_exchange_params=dict(defaults.extra_exchange_params) if defaults else {},
            )
        )
        if not providers[-1].client_id:
            logger.warning("Provider %s has no client id configured", name)
    return providers
