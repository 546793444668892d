"""
Token persistence. A token record is written once per successful callback, against the
SPIAccessToken named in the OAuth state.
"""
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from spi_oauth.exchange import ProviderToken
from spi_oauth.kube import SPI_GROUP, SPI_VERSION, ClusterClient

logger = logging.getLogger(__name__)

TOKEN_NAME_LABEL = "spi.appstudio.redhat.com/token-name"


@dataclass
class TokenRecord:
    access_token: str
    token_type: str
    refresh_token: str
    # Unix seconds; 0 when the provider gave no expiry
    expiry: int

    @classmethod
    def from_provider_token(cls, token: ProviderToken) -> "TokenRecord":
        return cls(
            access_token=token.access_token,
            token_type=token.token_type,
            refresh_token=token.refresh_token,
            expiry=int(token.expiry.timestamp()) if token.expiry else 0,
        )


@runtime_checkable
class TokenStorage(Protocol):
    async def store(self, access_token: dict, record: TokenRecord) -> None: ...


def _metadata(access_token: dict) -> tuple[str, str, str]:
    meta = access_token.get("metadata") or {}
    return meta.get("namespace", ""), meta.get("name", ""), meta.get("uid", "")


class MemoryTokenStorage:
    """In-process storage (dev/tests). Records keyed by (namespace, name)."""

    def __init__(self):
        self.records: dict[tuple[str, str], TokenRecord] = {}

    async def store(self, access_token: dict, record: TokenRecord) -> None:
        namespace, name, _ = _metadata(access_token)
        self.records[(namespace, name)] = record


def secret_name_for(token_name: str) -> str:
    return f"{token_name}-token-data"


class SecretTokenStorage:
    """Stores the token in a Secret next to (and owned by) the SPIAccessToken."""

    def __init__(self, cluster: ClusterClient):
        self._cluster = cluster

    def build_secret(self, access_token: dict, record: TokenRecord) -> dict:
        namespace, name, uid = _metadata(access_token)
        metadata = {
            "name": secret_name_for(name),
            "namespace": namespace,
            "labels": {TOKEN_NAME_LABEL: name},
        }
        if uid:
            metadata["ownerReferences"] = [
                {
                    "apiVersion": f"{SPI_GROUP}/{SPI_VERSION}",
                    "kind": "SPIAccessToken",
                    "name": name,
                    "uid": uid,
                }
            ]
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": metadata,
            "stringData": {
                "access_token": record.access_token,
                "token_type": record.token_type,
                "refresh_token": record.refresh_token,
                "expiry": str(record.expiry),
            },
        }

    async def store(self, access_token: dict, record: TokenRecord) -> None:
        secret = self.build_secret(access_token, record)
        await self._cluster.create_or_replace_secret(secret["metadata"]["namespace"], secret)
        logger.info("Stored token data in secret %s/%s", secret["metadata"]["namespace"], secret["metadata"]["name"])
