"""
OAuth flow for one service provider.

/authenticate checks the anonymous state from the operator, verifies in Kubernetes that the
caller may upload token data, parks the caller's Kubernetes token in the browser session under a
fresh flow key and sends the browser to the provider with a keyed state.

/callback verifies the keyed state, finds the parked Kubernetes token by flow key, exchanges the
code with the provider and stores the token against the SPIAccessToken (fetched as the caller).
"""
import logging
import uuid
from dataclasses import dataclass
from enum import Enum

from starlette.concurrency import run_in_threadpool

from spi_oauth import flow_store
from spi_oauth.access_gate import TOKEN_DATA_UPDATE, check_access
from spi_oauth.errors import (
    AccessDenied,
    AuthorizationRequired,
    FlowError,
    MissingCredential,
    PersistenceError,
    ProviderExchangeError,
)
from spi_oauth.exchange import ProviderConfig, ProviderExchange, ProviderToken, build_authorize_url
from spi_oauth.kube import ClusterClient, KubernetesApiError
from spi_oauth.session import Session
from spi_oauth.state import KeyedState, StateCodec
from spi_oauth.templates import RedirectTemplate
from spi_oauth.token_storage import TokenRecord, TokenStorage

logger = logging.getLogger(__name__)


class ExchangeResult(Enum):
    AUTHENTICATED = "authenticated"
    AUTHORIZATION_REQUIRED = "authorization_required"
    FAILED = "failed"


@dataclass
class ExchangeOutcome:
    result: ExchangeResult
    state: KeyedState | None = None
    token: ProviderToken | None = None
    credential: str | None = None
    error: FlowError | None = None


def extract_bearer_token(header: str | None) -> str:
    """Token from 'Authorization: Bearer <token>'; empty string if absent or another scheme."""
    if not header:
        return ""
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


class OAuthController:
    def __init__(
        self,
        provider: ProviderConfig,
        *,
        base_url: str,
        codec: StateCodec,
        cluster: ClusterClient,
        token_storage: TokenStorage,
        exchange: ProviderExchange,
        template: RedirectTemplate,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.codec = codec
        self.cluster = cluster
        self.token_storage = token_storage
        self.exchange = exchange
        self.template = template

    def redirect_url(self) -> str:
        """Callback URL registered with the provider."""
        return f"{self.base_url}/{self.provider.name.lower()}/callback"

    def default_redirect(self) -> str:
        return f"{self.base_url}/callback_success"

    async def authenticate(
        self,
        session: Session,
        state_string: str | None,
        k8s_token: str | None = None,
        authorization_header: str | None = None,
    ) -> str:
        """Returns the redirect notice page pointing at the provider's authorization URL."""
        state = self.codec.parse_anonymous(state_string)

        token = (k8s_token or "").strip() or extract_bearer_token(authorization_header)
        if not token:
            raise MissingCredential()

        if not await check_access(self.cluster, token, state.token_namespace, TOKEN_DATA_UPDATE):
            raise AccessDenied()

        flow_key = str(uuid.uuid4())
        keyed = KeyedState.from_anonymous(state, flow_key)
        url = build_authorize_url(
            self.provider,
            redirect_uri=self.redirect_url(),
            scopes=keyed.scopes,
            state=self.codec.encode(keyed),
        )
        page = self.template.render(url)
        # Nothing is parked in the session unless the page rendered
        await run_in_threadpool(flow_store.put_flow, session, flow_key, token)
        logger.debug("/authenticate ok", extra={"provider": self.provider.name, "namespace": state.token_namespace})
        return page

    async def finish_exchange(
        self,
        session: Session,
        state_string: str | None,
        code: str | None,
        scope: str | None = None,
    ) -> ExchangeOutcome:
        """
        Verify the keyed state, recover the Kubernetes token and exchange the code.
        A bad state raises StateDecodeError; everything after that is reported in the outcome.
        """
        state = self.codec.parse_keyed(state_string)

        credential = flow_store.get_flow(session, state.key)
        if not credential:
            return ExchangeOutcome(
                ExchangeResult.AUTHORIZATION_REQUIRED,
                state=state,
                error=AuthorizationRequired("no active oauth flow found for the state key"),
            )

        if not code:
            return ExchangeOutcome(ExchangeResult.FAILED, state=state, error=ProviderExchangeError("missing code"))
        try:
            token = await self.exchange.exchange(code, scope)
        except ProviderExchangeError as e:
            return ExchangeOutcome(ExchangeResult.FAILED, state=state, error=e)

        return ExchangeOutcome(ExchangeResult.AUTHENTICATED, state=state, token=token, credential=credential)

    async def sync_token_data(self, outcome: ExchangeOutcome) -> None:
        """Fetch the SPIAccessToken as the caller and store the token against it."""
        state = outcome.state
        try:
            access_token = await self.cluster.get_access_token(
                outcome.credential, state.token_namespace, state.token_name
            )
        except KubernetesApiError as e:
            raise PersistenceError(e) from e

        record = TokenRecord.from_provider_token(outcome.token)
        try:
            await self.token_storage.store(access_token, record)
        except KubernetesApiError as e:
            raise PersistenceError(e) from e

    async def callback(
        self,
        session: Session,
        state_string: str | None,
        code: str | None,
        scope: str | None = None,
        redirect_after_login: str | None = None,
    ) -> str:
        """Returns where to redirect the browser after the token is stored."""
        outcome = await self.finish_exchange(session, state_string, code, scope)
        if outcome.result is not ExchangeResult.AUTHENTICATED:
            raise outcome.error

        await self.sync_token_data(outcome)
        # The flow key is single use
        await run_in_threadpool(flow_store.delete_flow, session, outcome.state.key)

        logger.debug(
            "/callback ok",
            extra={"provider": self.provider.name, "namespace": outcome.state.token_namespace},
        )
        return redirect_after_login or self.default_redirect()
