"""
OAuth state codec. The state is an HS256 JWT shared with the operator that mints the anonymous state.
It carries no secrets, only the target token and scopes (and, once keyed, the session flow key),
so it is signed for tamper-evidence but not encrypted.
"""
from dataclasses import asdict, dataclass, field, fields
from typing import Any, TypeVar

import jwt

from spi_oauth.errors import StateDecodeError, StateEncodeError

_ALGORITHM = "HS256"

# dataclass field -> JWT claim
_CLAIMS = {
    "token_name": "tokenName",
    "token_namespace": "tokenNamespace",
    "scopes": "scopes",
    "service_provider_type": "serviceProviderType",
    "service_provider_url": "serviceProviderUrl",
    "key": "key",
}
_OPTIONAL = {"scopes", "service_provider_url"}


@dataclass
class AnonymousState:
    token_name: str
    token_namespace: str
    service_provider_type: str
    scopes: list[str] = field(default_factory=list)
    service_provider_url: str = ""


@dataclass
class KeyedState(AnonymousState):
    """Anonymous state plus the key of the pending flow in the browser session."""

    key: str = ""

    @classmethod
    def from_anonymous(cls, state: AnonymousState, key: str) -> "KeyedState":
        data = asdict(state)
        data["key"] = key
        return cls(**data)


S = TypeVar("S", bound=AnonymousState)


def _to_claims(state: AnonymousState) -> dict[str, Any]:
    return {_CLAIMS[k]: v for k, v in asdict(state).items()}


class StateCodec:
    def __init__(self, secret: bytes):
        if not secret:
            raise ValueError("state signing secret must not be empty")
        self._secret = secret

    def encode(self, state: AnonymousState) -> str:
        try:
            return jwt.encode(_to_claims(state), self._secret, algorithm=_ALGORITHM)
        except (TypeError, ValueError) as e:
            raise StateEncodeError(e) from e

    def parse_into(self, value: str | None, cls: type[S]) -> S:
        """Verify the signature and decode into cls. Any failure raises StateDecodeError."""
        if not value:
            raise StateDecodeError("state is empty")
        try:
            claims = jwt.decode(value, self._secret, algorithms=[_ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise StateDecodeError(e) from e

        kwargs = {}
        for f in fields(cls):
            claim = _CLAIMS[f.name]
            if claim not in claims or claims[claim] is None:
                if f.name in _OPTIONAL:
                    continue
                raise StateDecodeError(f"missing {claim}")
            kwargs[f.name] = claims[claim]
        scopes = kwargs.get("scopes", [])
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise StateDecodeError("scopes must be a list of strings")
        if cls is KeyedState and not kwargs.get("key"):
            raise StateDecodeError("missing key")
        return cls(**kwargs)

    def parse_anonymous(self, value: str | None) -> AnonymousState:
        return self.parse_into(value, AnonymousState)

    def parse_keyed(self, value: str | None) -> KeyedState:
        return self.parse_into(value, KeyedState)
