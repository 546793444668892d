"""
SPI OAuth service.
GET/POST {base}/{provider}/authenticate and {base}/{provider}/callback per configured provider,
plus {base}/callback_success and /health. Run with:

    uvicorn spi_oauth.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from spi_oauth import config
from spi_oauth.controller import OAuthController
from spi_oauth.database import make_session_factory
from spi_oauth.errors import FlowError
from spi_oauth.exchange import ProviderConfig, ProviderExchange
from spi_oauth.kube import ClusterClient
from spi_oauth.session import SessionManager
from spi_oauth.state import StateCodec
from spi_oauth.templates import RedirectTemplate, callback_success_page
from spi_oauth.token_storage import MemoryTokenStorage, SecretTokenStorage, TokenStorage

logger = logging.getLogger(__name__)


async def _form_value(request: Request, name: str) -> str | None:
    """Value from the form body, falling back to the query string."""
    if request.method == "POST":
        form = await request.form()
        value = form.get(name)
        if isinstance(value, str) and value:
            return value
    return request.query_params.get(name) or None


def _build_token_storage(kind: str, cluster: ClusterClient) -> TokenStorage:
    if kind == "memory":
        logger.warning("Using in-memory token storage; tokens are lost on restart")
        return MemoryTokenStorage()
    if kind != "kubernetes":
        raise ValueError(f"unknown token storage {kind!r}")
    return SecretTokenStorage(cluster)


def create_app(
    *,
    base_url: str | None = None,
    providers: list[ProviderConfig] | None = None,
    signing_secret: bytes | None = None,
    sessions: SessionManager | None = None,
    cluster: ClusterClient | None = None,
    token_storage: TokenStorage | None = None,
    http: httpx.AsyncClient | None = None,
    template: RedirectTemplate | None = None,
) -> FastAPI:
    """Build the app. Every collaborator defaults to what the environment configures."""
    logging.basicConfig(level=config.LOG_LEVEL)

    base_url = (base_url or config.BASE_URL).rstrip("/")
    base_path = urlparse(base_url).path.rstrip("/")
    providers = providers if providers is not None else config.load_providers()
    codec = StateCodec(signing_secret or config.load_signing_secret())
    if sessions is None:
        sessions = SessionManager(
            make_session_factory(config.SESSION_DATABASE_URL),
            ttl_seconds=config.SESSION_TTL_SECONDS,
            cookie_secure=config.SESSION_COOKIE_SECURE,
        )
    cluster = cluster or ClusterClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    token_storage = token_storage or _build_token_storage(config.TOKEN_STORAGE, cluster)
    http = http or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    template = template or RedirectTemplate.from_path(config.REDIRECT_TEMPLATE_PATH)

    controllers: dict[str, OAuthController] = {}
    for provider in providers:
        name = provider.name.lower()
        controllers[name] = OAuthController(
            provider,
            base_url=base_url,
            codec=codec,
            cluster=cluster,
            token_storage=token_storage,
            exchange=ProviderExchange(provider, redirect_uri=f"{base_url}/{name}/callback", http=http),
            template=template,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Drop expired sessions on startup; close outbound clients on shutdown."""
        sessions.purge_expired()
        logger.info("SPI OAuth service ready for providers: %s", ", ".join(controllers) or "(none)")
        yield
        await http.aclose()
        await cluster.aclose()

    app = FastAPI(title="SPI OAuth", version="0.1.0", lifespan=lifespan)
    app.state.controllers = controllers
    app.state.sessions = sessions

    @app.exception_handler(FlowError)
    async def flow_error_handler(request: Request, exc: FlowError):
        logger.log(
            exc.log_level,
            exc.message,
            extra={"error": exc.detail, "status": exc.status_code, "path": request.url.path},
        )
        return PlainTextResponse(exc.body(), status_code=exc.status_code)

    router = APIRouter()

    def _controller(provider: str) -> OAuthController | None:
        return controllers.get(provider.lower())

    @router.get("/callback_success", response_class=HTMLResponse)
    def callback_success():
        return HTMLResponse(callback_success_page())

    @router.api_route("/{provider}/authenticate", methods=["GET", "POST"])
    async def authenticate(provider: str, request: Request):
        controller = _controller(provider)
        if controller is None:
            return PlainTextResponse(f"unknown service provider: {provider}", status_code=404)
        session = await run_in_threadpool(sessions.load, request)
        page = await controller.authenticate(
            session,
            await _form_value(request, "state"),
            k8s_token=await _form_value(request, "k8s_token"),
            authorization_header=request.headers.get("Authorization"),
        )
        response = HTMLResponse(page)
        sessions.commit(session, response)
        return response

    @router.api_route("/{provider}/callback", methods=["GET", "POST"])
    async def callback(provider: str, request: Request):
        controller = _controller(provider)
        if controller is None:
            return PlainTextResponse(f"unknown service provider: {provider}", status_code=404)
        session = await run_in_threadpool(sessions.load, request)
        location = await controller.callback(
            session,
            await _form_value(request, "state"),
            await _form_value(request, "code"),
            scope=await _form_value(request, "scope"),
            redirect_after_login=await _form_value(request, "redirect_after_login"),
        )
        response = RedirectResponse(url=location, status_code=302)
        sessions.commit(session, response)
        return response

    app.include_router(router, prefix=base_path, tags=["oauth"])

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "spi_oauth"}

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spi_oauth.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
    )
